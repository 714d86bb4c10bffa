#!/usr/bin/env python3
"""
Exceptions raised by the model stepper.

Numerical problems (off-screen samples, non-finite forces) never raise; they
show up as NaN samples. These exceptions are only for callers misusing the API.
"""


class StepperError(Exception):
    """Base class for stepper errors."""


class TrackLockedError(StepperError):
    """Raised when a locked track's steps are edited from outside the stepper."""


class ModelConfigError(StepperError, ValueError):
    """Raised for invalid model configuration (solver name, masses, members)."""
