#!/usr/bin/env python3
"""
Motion strategies: the model-specific hooks behind a ParticleModel.

A ParticleModel owns the stepping loop; its Motion decides what a state looks
like, how it changes, and which tracks receive positions. Three variants exist:

- AnalyticMotion: closed-form x(t), y(t); no solver, no state to integrate.
- SingleParticle: Newton's second law for one particle with a cartesian
  (fx, fy) or polar (fr, ftheta about the origin) force law.
  State [x, vx, y, vy, t].
- CoupledPair: zero to two SingleParticle models coupled by internal radial and
  tangential forces of their relative polar state, plus each particle's own
  force law. State [x1, vx1, y1, vy1, x2, vx2, y2, vy2, t]; the system model
  itself reports the centre of mass.

Rates never raise on bad numbers: a NaN force yields NaN rates and the sample
shows up as invalid downstream.
"""
import math
from abc import ABC, abstractmethod
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from .errors import ModelConfigError
from .forces import CARTESIAN_VARS, POLAR_VARS, TIME_VARS, ForceFunction
from .vector_utils import polar_initial_state, polar_state, project_polar_force, relative_polar_state

Vector = Tuple[float, float]


def _accel(force: float, mass: float) -> float:
    if mass == 0:
        return math.nan
    return force / mass


class Motion(ABC):
    """
    Strategy interface: state size, rate function and member tracks.

    Subclasses are bound to the ParticleModel that drives them.
    """
    kind = ""
    uses_solver = True

    def __init__(self):
        self.model = None

    def bind(self, model) -> None:
        self.model = model

    def members(self) -> list:
        """Tracks receiving trace positions, in the order positions() returns them."""
        return [self.model]

    def is_empty(self) -> bool:
        return False

    @abstractmethod
    def state_size(self) -> int:
        ...

    @abstractmethod
    def initial_state(self) -> np.ndarray:
        ...

    def get_rate(self, state: np.ndarray, rate: np.ndarray) -> None:
        rate[:] = 0.0
        rate[-1] = 1.0

    @abstractmethod
    def positions(self) -> List[Vector]:
        """World positions of the member tracks for the model's current state/time."""

    def next_positions(self) -> Optional[List[Vector]]:
        """Advance one sub-step and return the member world positions."""
        model = self.model
        if self.uses_solver:
            for _ in range(model.iterations_per_step):
                model.solver.step()
        return self.positions()

    def on_commit(self, frame: int, state: np.ndarray) -> None:
        """Called when a frame's Step is committed."""

    def functions(self) -> List[ForceFunction]:
        return []


class AnalyticMotion(Motion):
    """
    Closed-form position functions of time.

    Args:
        x, y: expressions in t (strings or callables of t)
        parameters: named constants available to the expressions
    """
    kind = "analytic"
    uses_solver = False

    def __init__(self, x="0", y="0", parameters: Optional[Mapping[str, float]] = None):
        super().__init__()
        self.x = ForceFunction("x", x, TIME_VARS, parameters)
        self.y = ForceFunction("y", y, TIME_VARS, parameters)

    def state_size(self) -> int:
        return 5

    def initial_state(self) -> np.ndarray:
        state = np.zeros(5)
        state[-1] = self.model.initial_time
        return state

    def positions(self) -> List[Vector]:
        t = self.model.time
        return [(self.x.evaluate((t,)), self.y.evaluate((t,)))]

    def functions(self) -> List[ForceFunction]:
        return [self.x, self.y]


class SingleParticle(Motion):
    """
    One particle driven by a force law.

    Args:
        force_x, force_y: fx, fy (cartesian) or fr, ftheta (polar) expressions
        coordinates: "cartesian" or "polar"
        initial: initial values; cartesian {x, vx, y, vy}, polar {r, theta, vr, omega}
        parameters: named constants available to the expressions
    """
    kind = "particle"

    def __init__(self, force_x="0", force_y="0", coordinates: str = "cartesian",
                 initial: Optional[Mapping[str, float]] = None,
                 parameters: Optional[Mapping[str, float]] = None):
        super().__init__()
        if coordinates not in ("cartesian", "polar"):
            raise ModelConfigError(f"unknown coordinates {coordinates!r}")
        self.coordinates = coordinates
        if coordinates == "polar":
            self.force_x = ForceFunction("fr", force_x, POLAR_VARS, parameters)
            self.force_y = ForceFunction("ftheta", force_y, POLAR_VARS, parameters)
            self.initial: Dict[str, float] = {"r": 0.0, "theta": 0.0, "vr": 0.0, "omega": 0.0}
        else:
            self.force_x = ForceFunction("fx", force_x, CARTESIAN_VARS, parameters)
            self.force_y = ForceFunction("fy", force_y, CARTESIAN_VARS, parameters)
            self.initial = {"x": 0.0, "vx": 0.0, "y": 0.0, "vy": 0.0}
        self.set_initial(**(initial or {}))

    def set_initial(self, **values: float) -> None:
        for name, value in values.items():
            if name not in self.initial:
                raise ModelConfigError(f"unknown initial value {name!r} for {self.coordinates} particle")
            self.initial[name] = float(value)

    def state_size(self) -> int:
        return 5

    def initial_state(self) -> np.ndarray:
        t = self.model.initial_time
        v = self.initial
        if self.coordinates == "polar":
            return np.array(polar_initial_state(t, v["r"], v["theta"], v["vr"], v["omega"]))
        return np.array([v["x"], v["vx"], v["y"], v["vy"], t])

    def xy_forces(self, state: Sequence[float]) -> Vector:
        """Forces on this particle for a cartesian state [x, vx, y, vy, t]."""
        if self.coordinates == "polar":
            polar = polar_state(state[0], state[1], state[2], state[3], state[4])
            fr = self.force_x.evaluate(polar)
            ftheta = self.force_y.evaluate(polar)
            return project_polar_force(fr, ftheta, polar[2])
        return (self.force_x.evaluate(state), self.force_y.evaluate(state))

    def get_rate(self, state: np.ndarray, rate: np.ndarray) -> None:
        fx, fy = self.xy_forces(state)
        m = self.model.mass
        rate[0] = state[1]
        rate[1] = _accel(fx, m)
        rate[2] = state[3]
        rate[3] = _accel(fy, m)
        rate[4] = 1.0

    def positions(self) -> List[Vector]:
        state = self.model.state
        return [(state[0], state[2])]

    def functions(self) -> List[ForceFunction]:
        return [self.force_x, self.force_y]


class CoupledPair(Motion):
    """
    Two-body system with internal forces of the relative polar state.

    The internal forces fr, ftheta act on particle 1 and, with opposite sign, on
    particle 2. Member particles keep their own force laws as external forces.

    Attributes:
        particles: zero to two ParticleModels driven by SingleParticle motions
        particle_names: names awaiting resolution after a load
        relative_states: frame -> [r, vr, theta, omega, t] committed at each Step, reporting only
    """
    kind = "system"

    def __init__(self, force_r="0", force_theta="0", parameters: Optional[Mapping[str, float]] = None):
        super().__init__()
        self.force_r = ForceFunction("fr", force_r, POLAR_VARS, parameters)
        self.force_theta = ForceFunction("ftheta", force_theta, POLAR_VARS, parameters)
        self.particles: list = []
        self.particle_names: List[str] = []
        self.relative_states: Dict[int, List[float]] = {}

    def members(self) -> list:
        return list(self.particles) + [self.model]

    def is_empty(self) -> bool:
        return not self.particles

    def is_resolved(self) -> bool:
        return not self.particle_names

    def state_size(self) -> int:
        return 4 * len(self.particles) + 1

    def total_mass(self) -> float:
        return sum(p.mass for p in self.particles)

    def initial_state(self) -> np.ndarray:
        state = np.zeros(self.state_size())
        for i, particle in enumerate(self.particles):
            state[4 * i:4 * i + 4] = particle.motion.initial_state()[:4]
        state[-1] = self.model.initial_time
        return state

    def particle_state(self, state: Sequence[float], i: int) -> List[float]:
        return [state[4 * i], state[4 * i + 1], state[4 * i + 2], state[4 * i + 3], state[-1]]

    def get_rate(self, state: np.ndarray, rate: np.ndarray) -> None:
        rate[-1] = 1.0
        if not self.particles:
            return
        if len(self.particles) == 1:
            particle = self.particles[0]
            fx, fy = particle.motion.xy_forces(self.particle_state(state, 0))
            m = particle.mass
            rate[0] = state[1]
            rate[1] = _accel(fx, m)
            rate[2] = state[3]
            rate[3] = _accel(fy, m)
            return
        polar = relative_polar_state(state)
        fr = self.force_r.evaluate(polar)
        ftheta = self.force_theta.evaluate(polar)
        ix, iy = project_polar_force(fr, ftheta, polar[2])
        for i, particle in enumerate(self.particles):
            fx, fy = particle.motion.xy_forces(self.particle_state(state, i))
            sign = 1 if i == 0 else -1
            m = particle.mass
            rate[4 * i] = state[4 * i + 1]
            rate[4 * i + 1] = _accel(fx + sign * ix, m)
            rate[4 * i + 2] = state[4 * i + 3]
            rate[4 * i + 3] = _accel(fy + sign * iy, m)

    def center_of_mass(self, state: Sequence[float]) -> Vector:
        mass = xcm = ycm = 0.0
        for i, particle in enumerate(self.particles):
            m = particle.mass
            mass += m
            xcm += m * state[4 * i]
            ycm += m * state[4 * i + 2]
        if mass == 0:
            return (math.nan, math.nan)
        return (xcm / mass, ycm / mass)

    def positions(self) -> List[Vector]:
        state = self.model.state
        points = [(state[4 * i], state[4 * i + 2]) for i in range(len(self.particles))]
        points.append(self.center_of_mass(state))
        return points

    def on_commit(self, frame: int, state: np.ndarray) -> None:
        if len(self.particles) == 2:
            self.relative_states[frame] = list(relative_polar_state(state))

    def functions(self) -> List[ForceFunction]:
        return [self.force_r, self.force_theta]
