#!/usr/bin/env python3
"""
Data models for the model stepper.

This module defines the per-frame Step records shared between the stepper, the
derivative refresh and the export/rendering code, plus the small listener
mechanism tracks and coordinate systems use to announce changes.

Units and usage
- Step positions are image coordinates (pixels) at a given frame number.
- A Step whose position is NaN is invalid: the model produced no usable sample.
- StepArray is indexed by frame number; frames without a Step hold None.
"""
import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, Iterator, List, Optional, Tuple


@dataclass
class Step:
    """
    Cached position of a track at one frame.

    Fields:
    - frame: Frame number this step belongs to
    - x, y: Image position in pixels (NaN when invalid)
    """
    frame: int
    x: float = math.nan
    y: float = math.nan

    @property
    def valid(self) -> bool:
        return not (math.isnan(self.x) or math.isnan(self.y))

    @property
    def position(self) -> Tuple[float, float]:
        return (self.x, self.y)

    def set_position(self, x: float, y: float) -> None:
        self.x = x
        self.y = y


class StepArray:
    """Frame-indexed storage of Steps that grows and shrinks with the watermark."""

    def __init__(self):
        self._steps: List[Optional[Step]] = []

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[Optional[Step]]:
        return iter(self._steps)

    def get(self, frame: int) -> Optional[Step]:
        if 0 <= frame < len(self._steps):
            return self._steps[frame]
        return None

    def set(self, frame: int, step: Optional[Step]) -> None:
        if frame < 0:
            raise IndexError(f"negative frame number {frame}")
        if frame >= len(self._steps):
            self.set_length(frame + 1)
        self._steps[frame] = step

    def set_length(self, length: int) -> None:
        length = max(0, length)
        if length < len(self._steps):
            del self._steps[length:]
        else:
            self._steps.extend([None] * (length - len(self._steps)))

    def clear(self) -> None:
        self._steps = []

    def frames(self) -> List[int]:
        """Frame numbers that hold a step."""
        return [i for i, s in enumerate(self._steps) if s is not None]


Listener = Callable[[str, object, object], None]


class ChangeSupport:
    """
    Minimal property-change support: named events delivered to callbacks.

    Callbacks receive (name, old_value, new_value). A listener registered under
    "*" receives every event.
    """

    def __init__(self):
        self._listeners: DefaultDict[str, List[Listener]] = defaultdict(list)

    def add_listener(self, name: str, callback: Listener) -> None:
        if callback not in self._listeners[name]:
            self._listeners[name].append(callback)

    def remove_listener(self, name: str, callback: Listener) -> None:
        if callback in self._listeners.get(name, []):
            self._listeners[name].remove(callback)

    def fire(self, name: str, old=None, new=None) -> None:
        for callback in list(self._listeners.get(name, [])) + list(self._listeners.get("*", [])):
            callback(name, old, new)
