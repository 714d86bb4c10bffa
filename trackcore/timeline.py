#!/usr/bin/env python3
"""
Video timeline: which frames the active clip includes and when they occur.

The stepper only ever reads from the clip. Frame numbers index the underlying
video; the clip selects every step_size-th frame starting at
first_frame_number, for step_count steps.
"""
from dataclasses import dataclass

from .constants import DEFAULT_FRAME_DURATION


@dataclass
class VideoClip:
    """
    Fields:
    - frame_count: Number of frames in the underlying video
    - first_frame_number: First frame included in the clip
    - step_size: Frames between consecutive clip steps (>= 1)
    - step_count: Number of clip steps; defaults to all that fit in the video
    - frame_duration: Seconds per video frame
    - start_time: Time in seconds at first_frame_number
    """
    frame_count: int = 10
    first_frame_number: int = 0
    step_size: int = 1
    step_count: int = 0
    frame_duration: float = DEFAULT_FRAME_DURATION
    start_time: float = 0.0

    def __post_init__(self):
        if self.step_size < 1:
            raise ValueError("step_size must be at least 1")
        max_steps = 1 + (self.frame_count - 1 - self.first_frame_number) // self.step_size
        if self.step_count <= 0 or self.step_count > max_steps:
            self.step_count = max(max_steps, 0)

    @property
    def last_frame_number(self) -> int:
        return self.first_frame_number + (self.step_count - 1) * self.step_size

    @property
    def mean_step_duration(self) -> float:
        """Seconds between consecutive clip steps."""
        return self.frame_duration * self.step_size

    def includes_frame(self, n: int) -> bool:
        if n < self.first_frame_number or n > self.last_frame_number:
            return False
        return (n - self.first_frame_number) % self.step_size == 0

    def step_to_frame(self, step: int) -> int:
        return self.first_frame_number + step * self.step_size

    def frame_time(self, n: int) -> float:
        """Time in seconds at frame n."""
        return self.start_time + (n - self.first_frame_number) * self.frame_duration
