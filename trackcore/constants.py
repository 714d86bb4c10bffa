#!/usr/bin/env python3
"""
Shared constants for the model stepper (image pixels and seconds unless stated otherwise).

Keeping constants in one place helps ensure values are consistent across the
codebase and makes tuning easier.
"""

# Stepping controls
TRACE_PTS_PER_STEP = 10  # sub-steps (trace points) between two clip steps
ITERATIONS_PER_STEP = 100  # solver iterations per trace point for dynamic models
DEFAULT_SOLVER = "RK4"

# Safety envelope in image space; samples outside are marked invalid
X_LIMIT = 8000.0
Y_LIMIT = 6000.0

# Model defaults
DEFAULT_MASS = 1.0  # kg
DEFAULT_FRAME_DURATION = 1 / 30.0  # seconds per video frame
POLAR_SNAP = 1e-7  # |cos|, |sin| below this are treated as zero for polar initial values

# Rendering (viewer)
VIEW_WIDTH = 1100
VIEW_HEIGHT = 800
BACKGROUND_COLOR = (10, 12, 18)
GRID_COLOR = (40, 45, 60)
AXES_COLOR = (200, 60, 200)
STEP_COLOR = (255, 255, 0)
VELOCITY_VECTOR_COLOR = (255, 255, 255)
DEFAULT_TRACK_COLOR = (200, 200, 255)
SYSTEM_TRACK_COLOR = (51, 204, 51)

# Safety: avoid drawing outside reasonable integer pixel ranges
SAFE_COORD_LIMIT = 30000
