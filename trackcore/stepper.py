#!/usr/bin/env python3
"""
Model-driven particle tracks and the incremental stepper behind them.

A ParticleModel is a ParticleTrack whose positions come from a Motion
(closed-form, single particle or coupled pair) instead of hand marking. The
stepper extends the cached trajectory lazily, only as far as the current frame,
and keeps it consistent with frame-range, definition and coordinate changes.

Responsibilities
- refresh_steps(): extend steps, traces and derivatives from the last valid
  frame up to min(end frame, current frame).
- reset(): rebuild the initial state and the first Step.
- trim_steps(): shorten the trajectory when the end frame moves back, restoring
  the solver state saved at the new end (or re-stepping from the nearest key
  frame snapshot) so extending again reproduces it.
- Frame-range setters, solver choice and coordinate-change handling.

Stepping
- Each clip step is divided into TRACE_PTS_PER_STEP trace points. Dynamic
  motions run iterations_per_step solver steps per trace point, so the solver
  dt is mean_step_duration / TRACE_PTS_PER_STEP / iterations_per_step.
- Every TRACE_PTS_PER_STEP-th trace point lands on a clip frame and becomes
  that frame's Step.
- Samples outside the safety envelope (|x| >= X_LIMIT or |y| >= Y_LIMIT in
  image pixels) or non-finite are stored as NaN; the scene is warned once per
  model.

Concurrency
- Single-threaded. A model whose status is STEPPING ignores nested
  refresh_steps() calls triggered by its own change events.
"""
import logging
import math
from enum import Enum
from typing import Dict, List, Optional, Tuple

import numpy as np

from .constants import (
    DEFAULT_MASS,
    DEFAULT_SOLVER,
    DEFAULT_TRACK_COLOR,
    ITERATIONS_PER_STEP,
    TRACE_PTS_PER_STEP,
    X_LIMIT,
    Y_LIMIT,
)
from .coords import ReferenceFrame
from .dynamics import CoupledPair, Motion, SingleParticle
from .errors import ModelConfigError
from .integrators import create_solver
from .tracks import ParticleTrack
from .utils import is_finite_point

logger = logging.getLogger(__name__)


class StepperState(Enum):
    IDLE = "idle"
    STEPPING = "stepping"


def _in_envelope(px: float, py: float) -> bool:
    return is_finite_point(px, py) and abs(px) < X_LIMIT and abs(py) < Y_LIMIT


class ParticleModel(ParticleTrack):
    """
    A track whose steps are generated by a Motion.

    Args:
        name: Track name
        motion: Motion strategy (AnalyticMotion, SingleParticle or CoupledPair)
        mass: Particle mass (systems report the sum of their members instead)
        color: Display color
        solver: Solver name, "RK4" or "Euler"
        iterations_per_step: Solver steps per trace point

    Attributes:
        last_valid_frame: Highest frame with a computed Step, -1 when invalid
        key_frames: Frames where the trajectory was (re)started
        frame_states: frame -> copy of the solver state committed at that frame
        system: The coupled-pair model this particle belongs to, if any
    """

    def __init__(self, name: str, motion: Motion, mass: float = DEFAULT_MASS,
                 color=DEFAULT_TRACK_COLOR, solver: str = DEFAULT_SOLVER,
                 iterations_per_step: int = ITERATIONS_PER_STEP):
        self.motion = motion
        super().__init__(name, mass, color)
        motion.bind(self)
        if iterations_per_step < 1:
            raise ModelConfigError("iterations_per_step must be at least 1")
        self.iterations_per_step = int(iterations_per_step)
        self.solver_name = solver
        self.solver = create_solver(solver, self)
        self.state = np.zeros(motion.state_size())
        self.status = StepperState.IDLE
        self.system: Optional["ParticleModel"] = None
        self.locked = True

        self._start_frame = 0
        self._end_frame: Optional[int] = None
        self.initial_time = 0.0
        self.time = 0.0
        self.trace_dt = 0.0
        self.last_valid_frame = -1
        self.key_frames: List[int] = []
        self.frame_states: Dict[int, np.ndarray] = {}

        self.use_default_reference_frame = False
        self.refresh_steps_later = False
        self.refresh_derivs_later = False
        self.invalid_warning_shown = False
        self.inspector: Optional[Tuple[int, int]] = None

        self.add_listener("mass", self._on_definition_changed)
        self.add_listener("function", self._on_definition_changed)

    # ----- mass -----
    @ParticleTrack.mass.getter
    def mass(self) -> float:
        if isinstance(self.motion, CoupledPair):
            return self.motion.total_mass()
        return self._mass

    # ----- ODE interface -----
    def get_state(self) -> np.ndarray:
        return self.state

    def get_rate(self, state: np.ndarray, rate: np.ndarray) -> None:
        self.motion.get_rate(state, rate)

    # ----- frame range -----
    @property
    def start_frame(self) -> int:
        if self.system is not None:
            return self.system.start_frame
        return self._start_frame

    @property
    def end_frame(self) -> Optional[int]:
        """Last frame to step, or None for the end of the clip."""
        if self.system is not None:
            return self.system.end_frame
        return self._end_frame

    def end_frame_limit(self) -> int:
        clip = self.scene.clip
        end = clip.frame_count - 1 if self.end_frame is None else self.end_frame
        start = self.start_frame
        while end > start and not clip.includes_frame(end):
            end -= 1
        return end

    def set_start_frame(self, n: int) -> None:
        if self.system is not None:
            self.system.set_start_frame(n)
            return
        n = int(n)
        if self.scene is not None:
            clip = self.scene.clip
            n = min(max(n, clip.first_frame_number), clip.last_frame_number)
        if self._end_frame is not None:
            n = min(n, self._end_frame)
        if n == self._start_frame:
            return
        old = self._start_frame
        self._start_frame = n
        self.refresh_initial_time()
        self.invalidate()
        self.refresh_steps()
        self._repaint()
        logger.debug("%s start frame %d -> %d", self.name, old, n)
        self.fire("model_start", old, n)

    def set_end_frame(self, n: Optional[int]) -> None:
        if self.system is not None:
            self.system.set_end_frame(n)
            return
        old = self._end_frame
        if n is None:
            new = None
        else:
            n = max(int(n), 0, self._start_frame)
            new = n
            if self.scene is not None and n >= self.scene.clip.last_frame_number:
                new = None
        if new == old:
            return
        self._end_frame = new
        if self.scene is not None:
            if new is not None and new < self.last_valid_frame:
                self.trim_steps()
            else:
                self.refresh_steps()
        self._repaint()
        logger.debug("%s end frame %s -> %s", self.name, old, new)
        self.fire("model_end", old, new)

    def refresh_initial_time(self) -> None:
        if self.scene is not None:
            self.initial_time = self.scene.clip.frame_time(self.start_frame)
        if isinstance(self.motion, CoupledPair):
            for particle in self.motion.particles:
                particle.initial_time = self.initial_time

    # ----- configuration -----
    def set_solver(self, name: str) -> None:
        self.solver = create_solver(name, self)
        self.solver_name = name
        self.invalidate()
        self.refresh_steps()

    def set_iterations_per_step(self, n: int) -> None:
        if n < 1:
            raise ModelConfigError("iterations_per_step must be at least 1")
        self.iterations_per_step = int(n)
        self.invalidate()
        self.refresh_steps()

    def set_use_default_reference_frame(self, flag: bool) -> None:
        if flag == self.use_default_reference_frame:
            return
        self.use_default_reference_frame = bool(flag)
        self.invalidate()
        self.refresh_steps()
        self._repaint()

    def set_adjusting(self, adjusting: bool) -> None:
        """While adjusting, refreshes are postponed; ending the adjustment refreshes once."""
        self.refresh_steps_later = bool(adjusting)
        if not adjusting:
            self.refresh_steps()
            self._repaint()

    def set_parameter(self, name: str, value: float) -> None:
        for function in self.motion.functions():
            function.parameters[name] = float(value)
        self.definition_changed()

    def set_initial(self, **values: float) -> None:
        if not isinstance(self.motion, SingleParticle):
            raise ModelConfigError(f"{self.name!r} has no initial values")
        self.motion.set_initial(**values)
        self.definition_changed()

    def set_expression(self, function_name: str, expression) -> None:
        for function in self.motion.functions():
            if function.name == function_name:
                function.set_expression(expression)
                self.definition_changed()
                return
        raise ModelConfigError(f"{self.name!r} has no function {function_name!r}")

    def parameters(self) -> Dict[str, float]:
        params: Dict[str, float] = {}
        for function in self.motion.functions():
            params.update(function.parameters)
        return params

    def definition_changed(self) -> None:
        """Announce an edit of force laws, parameters or initial values."""
        self.fire("function")

    def invalidate(self) -> None:
        self.last_valid_frame = -1

    def _on_definition_changed(self, name, old, new) -> None:
        if self.system is not None:
            self.system.definition_changed()
            return
        self.invalidate()
        self.refresh_steps()
        self._repaint()

    def _repaint(self) -> None:
        if self.scene is not None:
            self.scene.repaint()

    # ----- coupled-pair membership -----
    def set_particles(self, particles: List["ParticleModel"]) -> None:
        """Replace the members of a coupled-pair system."""
        motion = self.motion
        if not isinstance(motion, CoupledPair):
            raise ModelConfigError(f"{self.name!r} is not a two-body system")
        particles = list(particles)
        if len(particles) > 2:
            raise ModelConfigError("a two-body system holds at most two particles")
        if len(set(map(id, particles))) != len(particles):
            raise ModelConfigError("duplicate particle in system")
        for p in particles:
            if p is None or not isinstance(p.motion, SingleParticle):
                raise ModelConfigError(f"{p!r} is not a single-particle model")
            if p.system is not None and p.system is not self:
                raise ModelConfigError(f"{p.name!r} already belongs to {p.system.name!r}")

        for p in motion.particles:
            if p not in particles:
                p.system = None
                p.invalidate()
                p.refresh_initial_time()
                p.refresh_steps()
        for p in particles:
            p.system = self
            p.invalidate()
        motion.particles = particles
        motion.particle_names = []
        motion.relative_states.clear()
        self.state = np.zeros(motion.state_size())
        self.refresh_initial_time()
        self.invalidate()
        logger.info("system %s members: %s", self.name, [p.name for p in particles])
        self.fire("particles", None, [p.name for p in particles])
        self.refresh_steps()
        self._repaint()

    def add_particle(self, particle: "ParticleModel") -> None:
        self.set_particles(list(self.motion.particles) + [particle])

    def remove_particle(self, particle: "ParticleModel") -> None:
        self.set_particles([p for p in self.motion.particles if p is not particle])

    def resolve_particles(self) -> bool:
        """Look up pending member names in the scene; True when resolved."""
        motion = self.motion
        if not isinstance(motion, CoupledPair) or motion.is_resolved():
            return True
        if self.scene is None:
            return False
        found = [self.scene.get_track(name) for name in motion.particle_names]
        if any(p is None for p in found):
            missing = [n for n, p in zip(motion.particle_names, found) if p is None]
            logger.debug("system %s waiting for members %s", self.name, missing)
            return False
        self.set_particles(found)
        return True

    # ----- coordinates -----
    def is_use_default_reference_frame(self) -> bool:
        if self.use_default_reference_frame:
            return True
        chain = self.scene.coords.origin_chain()
        return any(m in chain for m in self._related())

    def stepping_coords(self):
        coords = self.scene.coords
        if isinstance(coords, ReferenceFrame) and self.is_use_default_reference_frame():
            return coords.base()
        return coords

    def _related(self) -> List[ParticleTrack]:
        related: List[ParticleTrack] = [self] + self.motion.members()
        if self.system is not None:
            related.append(self.system)
        return related

    def on_transform_changed(self) -> None:
        """Coordinate transform changed: restep unless our own positions caused it."""
        chain = self.scene.coords.origin_chain()
        if any(m in chain for m in self._related()):
            return
        self.invalidate()
        if self.visible and not self.refresh_steps_later:
            self.refresh_steps()

    # ----- state snapshots -----
    def baseline_frame(self, n: int) -> Optional[int]:
        """Greatest key frame <= n, or None before the first one."""
        candidates = [k for k in self.key_frames if k <= n]
        return max(candidates) if candidates else None

    def save_state(self, frame: int) -> None:
        if self.motion.uses_solver:
            self.frame_states[frame] = self.state.copy()
        self.motion.on_commit(frame, self.state)

    def restore_state(self, frame: int) -> bool:
        if not self.motion.uses_solver:
            self.time = self.scene.clip.frame_time(frame)
            return True
        saved = self.frame_states.get(frame)
        if saved is not None and len(saved) == len(self.state):
            self.state[:] = saved
            self.time = float(saved[-1])
            return True
        # no snapshot at frame: resume from the key frame before it and re-step
        base = self.baseline_frame(frame)
        saved = self.frame_states.get(base) if base is not None else None
        if saved is None or len(saved) != len(self.state):
            return False
        self.state[:] = saved
        count = (frame - base) * TRACE_PTS_PER_STEP * self.iterations_per_step // self.scene.clip.step_size
        for _ in range(count):
            self.solver.step()
        self.time = float(self.state[-1])
        self.save_state(frame)
        logger.debug("%s restored frame %d from key frame %d", self.name, frame, base)
        return True

    # ----- stepping -----
    def _warn_invalid(self, px: float, py: float) -> None:
        if self.invalid_warning_shown:
            return
        self.invalid_warning_shown = True
        logger.warning("%s: position (%s, %s) is outside the drawable area; samples marked invalid",
                       self.name, px, py)
        if self.scene is not None:
            self.scene.warn_offscreen(self)

    def _image_point(self, coords, frame: int, x: float, y: float):
        px, py = coords.world_to_image(frame, x, y)
        if not _in_envelope(px, py):
            self._warn_invalid(px, py)
            return (math.nan, math.nan)
        return (px, py)

    def reset(self) -> None:
        """Rebuild the initial state and the Step at the first included frame."""
        if self.system is not None:
            return
        self.refresh_initial_time()
        self.state = np.asarray(self.motion.initial_state(), dtype=float)
        self.initial_time = float(self.state[-1])
        self.time = self.initial_time
        self.frame_states.clear()
        self.key_frames = []
        if isinstance(self.motion, CoupledPair):
            self.motion.relative_states.clear()
        self.last_valid_frame = -1
        scene = self.scene
        if scene is None:
            return
        clip = scene.clip
        members = self.motion.members()
        self.trace_dt = clip.mean_step_duration / TRACE_PTS_PER_STEP
        self.solver.initialize(self.trace_dt / self.iterations_per_step)

        start = self.start_frame
        end = self.end_frame_limit()
        first = start
        while first <= end and not clip.includes_frame(first):
            first += 1
        if self.motion.is_empty() or first > end:
            for m in members:
                m.steps.clear()
                m.trace.reset()
                m.clear_derivatives()
                m.last_valid_frame = -1
                m.fire("steps")
            return

        if self.motion.uses_solver:
            count = (first - start) * TRACE_PTS_PER_STEP * self.iterations_per_step // clip.step_size
            for _ in range(count):
                self.solver.step()
            self.time = float(self.state[-1])
        else:
            self.time = clip.frame_time(first)
        coords = self.stepping_coords()
        points = self.motion.positions()
        for m, (x, y) in zip(members, points):
            px, py = self._image_point(coords, first, x, y)
            m.steps.clear()
            m._put_step(first, px, py)
            m.trace.reset(px, py)
            m.clear_derivatives()
            m.last_valid_frame = first
            m.fire("step", None, first)
        self.save_state(first)
        self.key_frames = [first]
        self.last_valid_frame = first
        logger.debug("%s reset at frame %d (t=%.6g)", self.name, first, self.time)

    def refresh_steps(self) -> None:
        """Extend the trajectory up to min(end frame, current frame)."""
        scene = self.scene
        if scene is None or self.system is not None or self.refresh_steps_later:
            return
        if self.motion.is_empty() or self.status is StepperState.STEPPING:
            return
        self.status = StepperState.STEPPING
        try:
            with scene.painting_held():
                self._extend(scene)
        finally:
            self.status = StepperState.IDLE

    def _extend(self, scene) -> None:
        clip = scene.clip
        self.refresh_derivs_later = scene.playing
        end = min(self.end_frame_limit(), scene.frame_number)
        while end > self.start_frame and not clip.includes_frame(end):
            end -= 1
        if end <= self.last_valid_frame:
            return
        if self.last_valid_frame == -1:
            self.reset()
            if self.last_valid_frame == -1 or end <= self.last_valid_frame:
                return

        start = self.last_valid_frame
        ss = clip.step_size
        count = TRACE_PTS_PER_STEP * (end - start) // ss
        if count <= 0:
            return
        coords = self.stepping_coords()
        members = self.motion.members()
        start_time = self.initial_time + self.trace_dt * TRACE_PTS_PER_STEP * (start - self.start_frame) / ss

        for m in members:
            m.trace.begin(count)
            m.locked = False
        try:
            for k in range(1, count + 1):
                frame = start + int(k * ss / TRACE_PTS_PER_STEP)
                if not self.motion.uses_solver:
                    self.time = start_time + k * self.trace_dt
                points = self.motion.next_positions()
                if self.motion.uses_solver:
                    self.time = float(self.state[-1])
                on_step = k % TRACE_PTS_PER_STEP == 0
                for m, (x, y) in zip(members, points):
                    px, py = self._image_point(coords, frame, x, y)
                    m.trace.put(k - 1, px, py)
                    if on_step:
                        m._put_step(frame, px, py)
                if on_step:
                    self.save_state(frame)
            for m in members:
                m.trace.commit()
        finally:
            for m in members:
                m.trace.discard()
                m.locked = True

        start_update = start
        for _ in range(2):
            if start_update > ss:
                start_update -= ss
        n_update = 4 + (end - start)

        self.last_valid_frame = end
        active = scene.coords
        for m in members:
            m.steps.set_length(end + 1)
            m.last_valid_frame = end
            if isinstance(active, ReferenceFrame) and active.origin_track is m:
                active.set_origins()
                for frame in m.steps.frames():
                    ox, oy = active.world_to_image(frame, 0.0, 0.0)
                    m.steps.get(frame).set_position(ox, oy)
            if not self.refresh_derivs_later:
                m.update_derivatives(start_update, n_update)
                if end - start == ss:
                    m.fire("step", None, end)
                else:
                    m.fire("steps")
        logger.debug("%s stepped frames %d..%d (%d trace points)", self.name, start, end, count)

    def trim_steps(self) -> None:
        """Shorten the trajectory to the end frame."""
        scene = self.scene
        if scene is None or self.system is not None:
            return
        clip = scene.clip
        end = self.end_frame_limit()
        lvf = self.last_valid_frame
        if end >= lvf:
            return
        trim = TRACE_PTS_PER_STEP * (lvf - end) // clip.step_size
        members = self.motion.members()
        if any(len(m.trace) - trim < 0 for m in members):
            return
        for m in members:
            m.trace.trim(trim)
            m.steps.set_length(end + 1)
            m.update_derivatives(end - 2, lvf - end + 2)
            m.last_valid_frame = end
        for frame in [f for f in self.frame_states if f > end]:
            del self.frame_states[frame]
        if isinstance(self.motion, CoupledPair):
            for frame in [f for f in self.motion.relative_states if f > end]:
                del self.motion.relative_states[frame]
        if not self.restore_state(end):
            self.invalidate()
            return
        if end not in self.key_frames:
            self.key_frames.append(end)
            self.key_frames.sort()
        self.last_valid_frame = end
        logger.debug("%s trimmed to frame %d", self.name, end)
        for m in members:
            m.fire("steps")

    def refresh_derivs_if_needed(self) -> None:
        """Compute derivatives postponed during playback."""
        if not self.refresh_derivs_later:
            return
        self.refresh_derivs_later = False
        for m in self.motion.members():
            m.update_derivatives()
            m.fire("steps")
