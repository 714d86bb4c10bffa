#!/usr/bin/env python3
"""
Fixed-step ODE solvers for dynamic particle models.

Responsibilities
- Advance a state vector [x1, vx1, y1, vy1, ..., t] in place by one step dt.
- Rates come from the model: get_rate(state, rate) fills `rate` with d(state)/dt.

Numerical notes
- RK4 is the default: a high-accuracy, single-step method that evaluates the rate
  at four points per step. It is not symplectic, so energy drifts slowly over long
  runs, but linear invariants (total momentum with equal and opposite internal
  forces) are preserved to rounding error because every stage is a linear
  combination of rates.
- Euler is first order and mainly useful for comparison.
- A NaN produced by the rate function propagates into the state; nothing here
  raises on non-finite values.
"""
from abc import ABC, abstractmethod
from typing import Dict, Protocol, Type

import numpy as np

from .errors import ModelConfigError


class ODE(Protocol):
    def get_state(self) -> np.ndarray: ...

    def get_rate(self, state: np.ndarray, rate: np.ndarray) -> None: ...


class ODESolver(ABC):
    """Base class: holds the ODE and the step size."""

    def __init__(self, ode: ODE):
        self.ode = ode
        self.dt = 0.0

    def initialize(self, dt: float) -> None:
        self.dt = float(dt)

    @abstractmethod
    def step(self) -> float:
        """Advance the ODE state in place by dt; returns the step taken."""


class Euler(ODESolver):
    def step(self) -> float:
        state = self.ode.get_state()
        rate = np.zeros_like(state)
        self.ode.get_rate(state, rate)
        state += rate * self.dt
        return self.dt


class RK4(ODESolver):
    """
    Fourth-order Runge-Kutta.

    Workflow:
    1) k1 at t
    2) k2 at t + dt/2 using k1
    3) k3 at t + dt/2 using k2
    4) k4 at t + dt using k3
    Combine (k1 + 2*k2 + 2*k3 + k4)/6.
    """

    def step(self) -> float:
        state = self.ode.get_state()
        dt = self.dt
        k1 = np.zeros_like(state)
        k2 = np.zeros_like(state)
        k3 = np.zeros_like(state)
        k4 = np.zeros_like(state)

        self.ode.get_rate(state, k1)
        self.ode.get_rate(state + k1 * (dt * 0.5), k2)
        self.ode.get_rate(state + k2 * (dt * 0.5), k3)
        self.ode.get_rate(state + k3 * dt, k4)

        state += (k1 + 2.0 * (k2 + k3) + k4) * (dt / 6.0)
        return dt


SOLVERS: Dict[str, Type[ODESolver]] = {"RK4": RK4, "Euler": Euler}


def create_solver(name: str, ode: ODE) -> ODESolver:
    try:
        return SOLVERS[name](ode)
    except KeyError:
        raise ModelConfigError(f"unknown solver {name!r}; expected one of {sorted(SOLVERS)}") from None
