#!/usr/bin/env python3
"""
Point-mass tracks: per-frame positions, sub-step traces and derivatives.

A ParticleTrack is anything that has a position at some frames: a hand-marked
point or a model-driven particle (see stepper.ParticleModel). Positions are
stored as image-space Steps; velocities and accelerations are derived by
central finite differences over world-space positions and stored in world
units per second.

Locking
- While `locked` is set, set_step() refuses edits from outside. Models keep
  their own tracks locked except while the stepper is writing to them.
"""
import math
from typing import Dict, Optional, Tuple

import numpy as np

from .constants import DEFAULT_MASS, DEFAULT_TRACK_COLOR
from .data_models import ChangeSupport, Step, StepArray
from .errors import ModelConfigError, TrackLockedError
from .trace import TraceBuffer

Vector = Tuple[float, float]


class ParticleTrack:
    """
    A named point mass with frame-indexed steps.

    Attributes:
        name: Track name, unique within a scene
        steps: Frame-indexed Steps (image coordinates)
        trace: Sub-step trace buffer (empty for hand-marked tracks)
        velocities, accelerations: frame -> (vx, vy) / (ax, ay) in world units
        locked: True when steps may not be edited externally
    """

    def __init__(self, name: str, mass: float = DEFAULT_MASS, color=DEFAULT_TRACK_COLOR):
        self.name = name
        self.support = ChangeSupport()
        self._mass = DEFAULT_MASS
        self.mass = mass
        self.color = tuple(color)
        self.visible = True
        self.locked = False
        self.steps = StepArray()
        self.trace = TraceBuffer()
        self.velocities: Dict[int, Vector] = {}
        self.accelerations: Dict[int, Vector] = {}
        self.scene = None

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r})"

    # ----- mass -----
    @property
    def mass(self) -> float:
        return self._mass

    @mass.setter
    def mass(self, value: float) -> None:
        value = float(value)
        if value < 0 or math.isnan(value):
            raise ModelConfigError(f"mass must be non-negative, got {value}")
        if value != self._mass:
            old = self._mass
            self._mass = value
            self.support.fire("mass", old, value)

    # ----- listeners -----
    def add_listener(self, name: str, callback) -> None:
        self.support.add_listener(name, callback)

    def remove_listener(self, name: str, callback) -> None:
        self.support.remove_listener(name, callback)

    def fire(self, name: str, old=None, new=None) -> None:
        self.support.fire(name, old, new)

    # ----- steps -----
    def get_step(self, frame: int) -> Optional[Step]:
        return self.steps.get(frame)

    def set_step(self, frame: int, x: float, y: float) -> Step:
        """Mark the image position at a frame (external edit)."""
        if self.locked:
            raise TrackLockedError(f"track {self.name!r} is locked")
        step = self._put_step(frame, x, y)
        self.fire("step", None, frame)
        return step

    def _put_step(self, frame: int, x: float, y: float) -> Step:
        step = self.steps.get(frame)
        if step is None:
            step = Step(frame, x, y)
            self.steps.set(frame, step)
        else:
            step.set_position(x, y)
        return step

    def world_position(self, frame: int, coords=None) -> Optional[Vector]:
        step = self.steps.get(frame)
        if step is None or not step.valid:
            return None
        coords = coords or self.scene.coords
        return coords.image_to_world(frame, step.x, step.y)

    # ----- derivatives -----
    def clear_derivatives(self) -> None:
        self.velocities.clear()
        self.accelerations.clear()

    def update_derivatives(self, start_frame: Optional[int] = None, count: Optional[int] = None) -> None:
        """
        Recompute velocity and acceleration for count clip steps from start_frame.

        With no arguments the whole clip is refreshed.
        """
        scene = self.scene
        if scene is None:
            return
        clip = scene.clip
        if start_frame is None:
            start_frame, count = clip.first_frame_number, clip.step_count
        ds = clip.step_size
        dt = clip.mean_step_duration
        length = len(self.steps) + ds + 1
        xs = np.full(length, np.nan)
        ys = np.full(length, np.nan)
        for n, step in enumerate(self.steps):
            if step is None or not step.valid or not clip.includes_frame(n):
                continue
            xs[n], ys[n] = scene.coords.image_to_world(n, step.x, step.y)

        end = start_frame + (count - 1) * ds
        for n in range(max(start_frame, 0), min(end, len(self.steps) - 1) + 1):
            if n - ds < 0:
                self.velocities.pop(n, None)
                self.accelerations.pop(n, None)
                continue
            vx = (xs[n + ds] - xs[n - ds]) / (2 * dt)
            vy = (ys[n + ds] - ys[n - ds]) / (2 * dt)
            ax = (xs[n + ds] - 2 * xs[n] + xs[n - ds]) / (dt * dt)
            ay = (ys[n + ds] - 2 * ys[n] + ys[n - ds]) / (dt * dt)
            if math.isnan(vx) or math.isnan(vy) or math.isnan(xs[n]):
                self.velocities.pop(n, None)
            else:
                self.velocities[n] = (float(vx), float(vy))
            if math.isnan(ax) or math.isnan(ay):
                self.accelerations.pop(n, None)
            else:
                self.accelerations[n] = (float(ax), float(ay))
        # drop derivatives beyond the last step
        last = len(self.steps) - 1
        for table in (self.velocities, self.accelerations):
            for n in [k for k in table if k >= last]:
                del table[n]

    def velocity(self, frame: int) -> Optional[Vector]:
        return self.velocities.get(frame)

    def acceleration(self, frame: int) -> Optional[Vector]:
        return self.accelerations.get(frame)
