#!/usr/bin/env python3
"""
General utilities for the model stepper.
"""
import math
from typing import Optional


def try_float(val) -> Optional[float]:
    try:
        return float(val)
    except (TypeError, ValueError):
        return None


def try_int(val) -> Optional[int]:
    try:
        return int(val)
    except (TypeError, ValueError):
        return None


def is_finite_point(x: float, y: float) -> bool:
    return math.isfinite(x) and math.isfinite(y)
