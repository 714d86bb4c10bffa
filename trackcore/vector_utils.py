#!/usr/bin/env python3
"""
Vector helper functions for 2D operations and polar conversions.

These are small, fast functions used throughout the stepper. State vectors follow
the fixed layout [x1, vx1, y1, vy1, (x2, vx2, y2, vy2), t]; polar states are
[r, vr, theta, omega, t].
"""
import math
from typing import Sequence, Tuple

from .constants import POLAR_SNAP


def clamp(x: float, a: float, b: float) -> float:
    """Clamp x to the inclusive range [a, b]."""
    return max(a, min(b, x))


def vec_len(a: Tuple[float, float]) -> float:
    return math.hypot(a[0], a[1])


def vec_angle(a: Tuple[float, float]) -> float:
    return math.atan2(a[1], a[0])


def rotate(a: Tuple[float, float], angle: float) -> Tuple[float, float]:
    c = math.cos(angle)
    s = math.sin(angle)
    return (a[0] * c - a[1] * s, a[0] * s + a[1] * c)


def polar_state(dx: float, vx: float, dy: float, vy: float, t: float) -> list:
    """
    Convert a cartesian offset and velocity to a polar state [r, vr, theta, omega, t].

    When r == 0 the decomposition is singular; the velocity's own magnitude and
    angle stand in for vr and theta, and omega is 0. Force laws are written
    against this convention, so it must not change.
    """
    r = math.sqrt(dx * dx + dy * dy)
    v = math.sqrt(vx * vx + vy * vy)
    rang = math.atan2(dy, dx)
    vang = math.atan2(vy, vx)
    dang = vang - rang
    if r == 0:
        return [r, v, vang, 0.0, t]
    return [r, v * math.cos(dang), rang, v * math.sin(dang) / r, t]


def relative_polar_state(state: Sequence[float]) -> list:
    """
    Polar state of particle 1 relative to particle 2.

    Args:
        state: two-body state [x1, vx1, y1, vy1, x2, vx2, y2, vy2, t]

    Returns:
        [r, vr, theta, omega, t]
    """
    return polar_state(
        state[0] - state[4],
        state[1] - state[5],
        state[2] - state[6],
        state[3] - state[7],
        state[8],
    )


def polar_to_cartesian(r: float, vr: float, theta: float, omega: float) -> Tuple[float, float, float, float]:
    """Inverse of polar_state for r > 0. Returns (x, vx, y, vy)."""
    c = math.cos(theta)
    s = math.sin(theta)
    romega = r * omega
    return (r * c, vr * c - romega * s, r * s, vr * s + romega * c)


def polar_initial_state(t: float, r: float, theta: float, vr: float, omega: float) -> list:
    """
    Cartesian initial state [x, vx, y, vy, t] from polar initial values.

    Unlike polar_to_cartesian, tiny cos/sin values are snapped to zero so that
    axis-aligned initial values produce exact zeros.
    """
    c = math.cos(theta)
    s = math.sin(theta)
    if abs(c) < POLAR_SNAP:
        c = 0.0
    if abs(s) < POLAR_SNAP:
        s = 0.0
    romega = r * omega
    return [r * c, vr * c - romega * s, r * s, vr * s + romega * c, t]


def project_polar_force(fr: float, ftheta: float, theta: float) -> Tuple[float, float]:
    """Project radial and tangential force components onto x and y."""
    c = math.cos(theta)
    s = math.sin(theta)
    return (fr * c - ftheta * s, fr * s + ftheta * c)
