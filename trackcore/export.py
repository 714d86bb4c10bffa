#!/usr/bin/env python3
"""
Tabular data for a track: one row per clip step.

Columns (world units and seconds; angles in radians):
t, x, y, r, theta_r, vx, vy, v, theta_v, ax, ay, a, theta_a, step, frame,
px, py, p, theta_p
Two-body systems add the relative polar state of particle 1 w.r.t. particle 2:
r_rel, theta_rel, vr_rel, omega_rel

Missing values (no step, invalid sample, no derivative yet) are NaN.
"""
import csv
import logging
import math
from typing import List

import numpy as np

from .dynamics import CoupledPair
from .stepper import ParticleModel
from .tracks import ParticleTrack
from .vector_utils import vec_angle, vec_len

logger = logging.getLogger(__name__)

BASE_COLUMNS = (
    "t", "x", "y", "r", "theta_r",
    "vx", "vy", "v", "theta_v",
    "ax", "ay", "a", "theta_a",
    "step", "frame",
    "px", "py", "p", "theta_p",
)
SYSTEM_COLUMNS = ("r_rel", "theta_rel", "vr_rel", "omega_rel")

_NAN2 = (math.nan, math.nan)


def _magnitude_angle(vec) -> tuple:
    if math.isnan(vec[0]) or math.isnan(vec[1]):
        return _NAN2
    return (vec_len(vec), vec_angle(vec))


def columns(track: ParticleTrack) -> List[str]:
    cols = list(BASE_COLUMNS)
    if isinstance(track, ParticleModel) and isinstance(track.motion, CoupledPair):
        cols.extend(SYSTEM_COLUMNS)
    return cols


def data_table(track: ParticleTrack) -> np.ndarray:
    """Rows for every clip step of the scene's clip; shape (step_count, len(columns(track)))."""
    scene = track.scene
    clip = scene.clip
    system = isinstance(track, ParticleModel) and isinstance(track.motion, CoupledPair)
    table = np.full((clip.step_count, len(columns(track))), np.nan)
    mass = track.mass
    for i in range(clip.step_count):
        frame = clip.step_to_frame(i)
        row = table[i]
        row[0] = clip.frame_time(frame)
        row[13] = i
        row[14] = frame
        pos = track.world_position(frame) or _NAN2
        vel = track.velocity(frame) or _NAN2
        acc = track.acceleration(frame) or _NAN2
        row[1], row[2] = pos
        row[3], row[4] = _magnitude_angle(pos)
        row[5], row[6] = vel
        row[7], row[8] = _magnitude_angle(vel)
        row[9], row[10] = acc
        row[11], row[12] = _magnitude_angle(acc)
        row[15], row[16] = mass * vel[0], mass * vel[1]
        row[17], row[18] = _magnitude_angle((row[15], row[16]))
        if system:
            rel = track.motion.relative_states.get(frame)
            if rel is not None and frame <= track.last_valid_frame:
                row[19], row[20], row[21], row[22] = rel[0], rel[2], rel[1], rel[3]
    return table


def export_csv(track: ParticleTrack, path: str) -> None:
    table = data_table(track)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(columns(track))
        for row in table:
            writer.writerow(["" if math.isnan(v) else repr(float(v)) for v in row])
    logger.info("exported %d rows of %s to %s", len(table), track.name, path)
