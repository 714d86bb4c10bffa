#!/usr/bin/env python3
"""
JSON save/load of tracks and models.

Schema
======
Scene JSON:
{
  "name": "Optional display name",
  "clip": {"frame_count": 100, "first_frame_number": 0, "step_size": 1,
           "frame_duration": 0.0333, "start_time": 0.0},   # optional
  "tracks": [
    {
      "type": "particle",               # track | analytic | particle | system
      "name": "A",
      "mass": 1.0,
      "color": [200, 200, 255],
      "start_frame": 3,                 # omitted when 0
      "end_frame": 40,                  # omitted when unbounded
      "solver": "RK4",
      "iterations_per_step": 100,
      "use_default_reference_frame": false,
      "parameters": {"k": 2.0},
      "coordinates": "cartesian",       # particle only
      "initial": {"x": 0, "vx": 1, "y": 0, "vy": 0},
      "functions": {"fx": "-k*x", "fy": "0"}
    },
    {
      "type": "system",
      "name": "AB",
      "particles": ["A", "B"],
      "inspector": [40, 60],
      "functions": {"fr": "-1/r**2", "ftheta": "0"}
    }
  ]
}

Loading never raises on bad entries: malformed tracks are skipped with a
warning, and system members that cannot be found yet stay pending until
Scene.resolve_pending() finds them. Loaded models are always invalidated so
derived data is recomputed.
"""
import json
import logging
from typing import Dict, List, Optional, Tuple

from .constants import DEFAULT_MASS, DEFAULT_SOLVER, DEFAULT_TRACK_COLOR, ITERATIONS_PER_STEP
from .dynamics import AnalyticMotion, CoupledPair, SingleParticle
from .scene import Scene
from .stepper import ParticleModel
from .timeline import VideoClip
from .tracks import ParticleTrack
from .utils import try_float, try_int

logger = logging.getLogger(__name__)


def _read_json(path: str) -> Optional[dict]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as exc:
        logger.warning("cannot read %s: %s", path, exc)
        return None


def _coerce_color(c) -> Tuple[int, int, int]:
    try:
        r, g, b = int(c[0]), int(c[1]), int(c[2])
    except (TypeError, ValueError, IndexError):
        return DEFAULT_TRACK_COLOR
    return (max(0, min(255, r)), max(0, min(255, g)), max(0, min(255, b)))


# ----- save -----
def _functions_to_dict(model: ParticleModel) -> Dict[str, Optional[str]]:
    out: Dict[str, Optional[str]] = {}
    for function in model.motion.functions():
        if not function.is_expression:
            logger.warning("%s.%s is a Python callable and is saved as 0", model.name, function.name)
        out[function.name] = function.expression if function.is_expression else "0"
    return out


def track_to_dict(track: ParticleTrack) -> dict:
    data: dict = {"name": track.name, "color": list(track.color)}
    if not isinstance(track, ParticleModel):
        data["type"] = "track"
        data["mass"] = track.mass
        data["steps"] = [[s.frame, s.x, s.y] for s in track.steps if s is not None and s.valid]
        return data

    motion = track.motion
    data["type"] = motion.kind
    if motion.kind != "system":
        data["mass"] = track.mass
    if track.system is None:
        if track.start_frame > 0:
            data["start_frame"] = track.start_frame
        if track.end_frame is not None:
            data["end_frame"] = track.end_frame
    data["solver"] = track.solver_name
    data["iterations_per_step"] = track.iterations_per_step
    data["use_default_reference_frame"] = track.use_default_reference_frame
    data["parameters"] = track.parameters()
    data["functions"] = _functions_to_dict(track)
    if isinstance(motion, SingleParticle):
        data["coordinates"] = motion.coordinates
        data["initial"] = dict(motion.initial)
    elif isinstance(motion, CoupledPair):
        names = [p.name for p in motion.particles] or list(motion.particle_names)
        data["particles"] = names
        if track.inspector is not None:
            data["inspector"] = list(track.inspector)
    return data


def scene_to_dict(scene, name: Optional[str] = None) -> dict:
    clip = scene.clip
    data = {
        "clip": {
            "frame_count": clip.frame_count,
            "first_frame_number": clip.first_frame_number,
            "step_size": clip.step_size,
            "step_count": clip.step_count,
            "frame_duration": clip.frame_duration,
            "start_time": clip.start_time,
        },
        "tracks": [track_to_dict(t) for t in scene.tracks],
    }
    if name:
        data["name"] = name
    return data


def save_scene(scene, path: str, name: Optional[str] = None) -> None:
    with open(path, "w", encoding="utf-8") as f:
        json.dump(scene_to_dict(scene, name), f, indent=2)
    logger.info("saved %d tracks to %s", len(scene.tracks), path)


# ----- load -----
def track_from_dict(data: dict) -> Optional[ParticleTrack]:
    """Build a track from its JSON form; None if the entry is malformed."""
    kind = data.get("type", "particle")
    name = data.get("name")
    if not name:
        logger.warning("skipping unnamed track entry")
        return None
    color = _coerce_color(data.get("color", DEFAULT_TRACK_COLOR))
    mass = try_float(data.get("mass", DEFAULT_MASS))
    if mass is None or mass < 0:
        logger.warning("track %s: bad mass %r, using default", name, data.get("mass"))
        mass = DEFAULT_MASS
    functions = data.get("functions") or {}
    params = {k: v for k, v in ((k, try_float(v)) for k, v in (data.get("parameters") or {}).items())
              if v is not None}

    try:
        if kind == "track":
            track = ParticleTrack(name, mass, color)
            for entry in data.get("steps", []):
                frame, x, y = try_int(entry[0]), try_float(entry[1]), try_float(entry[2])
                if frame is not None and x is not None and y is not None:
                    track.set_step(frame, x, y)
            return track
        if kind == "analytic":
            motion = AnalyticMotion(functions.get("x", "0"), functions.get("y", "0"), params)
        elif kind == "particle":
            coordinates = data.get("coordinates", "cartesian")
            fx = functions.get("fr" if coordinates == "polar" else "fx", "0")
            fy = functions.get("ftheta" if coordinates == "polar" else "fy", "0")
            motion = SingleParticle(fx, fy, coordinates, data.get("initial"), params)
        elif kind == "system":
            motion = CoupledPair(functions.get("fr", "0"), functions.get("ftheta", "0"), params)
            motion.particle_names = [str(n) for n in data.get("particles", [])]
        else:
            logger.warning("track %s: unknown type %r", name, kind)
            return None
        iterations = try_int(data.get("iterations_per_step")) or ITERATIONS_PER_STEP
        model = ParticleModel(name, motion, mass, color, data.get("solver", DEFAULT_SOLVER), iterations)
    except (SyntaxError, ValueError, TypeError, IndexError) as exc:
        logger.warning("skipping track %s: %s", name, exc)
        return None

    model._start_frame = max(try_int(data.get("start_frame", 0)) or 0, 0)
    end = try_int(data.get("end_frame"))
    model._end_frame = end if end is not None and end >= model._start_frame else None
    model.use_default_reference_frame = bool(data.get("use_default_reference_frame", False))
    inspector = data.get("inspector")
    if isinstance(inspector, (list, tuple)) and len(inspector) == 2:
        x, y = try_int(inspector[0]), try_int(inspector[1])
        if x is not None and y is not None:
            model.inspector = (x, y)
    return model


def load_into(scene, data: dict) -> List[ParticleTrack]:
    """Add the tracks described by data to scene; returns the tracks added."""
    added: List[ParticleTrack] = []
    for entry in data.get("tracks", []):
        if not isinstance(entry, dict):
            continue
        track = track_from_dict(entry)
        if track is None:
            continue
        if scene.get_track(track.name) is not None:
            logger.warning("track %s already exists; skipped", track.name)
            continue
        scene.add_track(track)
        added.append(track)
    scene.resolve_pending()
    for track in added:
        if isinstance(track, ParticleModel):
            track.invalidate()
    scene.draw()
    logger.info("loaded %d tracks", len(added))
    return added


def load_scene(path: str, scene=None):
    """Read a scene file; returns the scene, or None if the file is unreadable."""
    data = _read_json(path)
    if not isinstance(data, dict):
        return None
    if scene is None:
        clip_data = data.get("clip") or {}
        clip_kwargs = {}
        for key, conv in (("frame_count", try_int), ("first_frame_number", try_int),
                          ("step_size", try_int), ("step_count", try_int),
                          ("frame_duration", try_float), ("start_time", try_float)):
            value = conv(clip_data.get(key))
            if value is not None:
                clip_kwargs[key] = value
        try:
            clip = VideoClip(**clip_kwargs)
        except ValueError as exc:
            logger.warning("bad clip in %s (%s); using defaults", path, exc)
            clip = VideoClip()
        scene = Scene(clip)
    load_into(scene, data)
    return scene
