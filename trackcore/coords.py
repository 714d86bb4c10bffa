#!/usr/bin/env python3
"""
Coordinate systems mapping model "world" positions to image pixels per frame.

ImageCoordSystem is a per-frame similarity transform (origin, scale, rotation)
whose values can change at key frames. ReferenceFrame wraps another system and
moves its origin along a track, which may itself be a stepped model; the
origin_chain() of a system lists every track acting as a moving origin so a
model can tell when a transform change is caused by its own positions.
"""
import bisect
import logging
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple

from .data_models import ChangeSupport
from .vector_utils import rotate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FrameTransform:
    """Transform values in effect from a key frame onward."""
    origin_x: float = 0.0
    origin_y: float = 0.0
    scale: float = 1.0  # pixels per world unit
    angle: float = 0.0  # radians, world x-axis relative to image x-axis


class ImageCoordSystem:
    """
    World-to-image transform with key-framed origin, scale and angle.

    With default arguments the transform is the identity. When y_up is True the
    world y-axis points up the image (image y grows downward).
    """

    def __init__(self, origin=(0.0, 0.0), scale: float = 1.0, angle: float = 0.0, y_up: bool = False):
        if scale <= 0:
            raise ValueError("scale must be positive")
        self.y_up = y_up
        self.support = ChangeSupport()
        self._key_frames: List[int] = [0]
        self._values: Dict[int, FrameTransform] = {
            0: FrameTransform(float(origin[0]), float(origin[1]), float(scale), float(angle))
        }

    # ----- listeners -----
    def add_listener(self, name: str, callback) -> None:
        self.support.add_listener(name, callback)

    def remove_listener(self, name: str, callback) -> None:
        self.support.remove_listener(name, callback)

    def origin_chain(self) -> Tuple:
        return ()

    def base(self) -> "ImageCoordSystem":
        return self

    # ----- key frames -----
    @property
    def key_frames(self) -> List[int]:
        return list(self._key_frames)

    def transform_at(self, n: int) -> FrameTransform:
        i = bisect.bisect_right(self._key_frames, n) - 1
        return self._values[self._key_frames[max(i, 0)]]

    def _set(self, frame: Optional[int], **changes) -> None:
        if frame is None:
            # fixed: one value for all frames
            current = self.transform_at(0)
            self._key_frames = [0]
            self._values = {0: replace(current, **changes)}
        else:
            current = self.transform_at(frame)
            if frame not in self._values:
                bisect.insort(self._key_frames, frame)
            self._values[frame] = replace(current, **changes)
        self.support.fire("transform")

    def set_origin(self, x: float, y: float, frame: Optional[int] = None) -> None:
        self._set(frame, origin_x=float(x), origin_y=float(y))

    def set_scale(self, scale: float, frame: Optional[int] = None) -> None:
        if scale <= 0:
            raise ValueError("scale must be positive")
        self._set(frame, scale=float(scale))

    def set_angle(self, angle: float, frame: Optional[int] = None) -> None:
        self._set(frame, angle=float(angle))

    # ----- transforms -----
    def world_to_image(self, n: int, x: float, y: float) -> Tuple[float, float]:
        tf = self.transform_at(n)
        xr, yr = rotate((x, y), tf.angle)
        if self.y_up:
            yr = -yr
        return (tf.origin_x + xr * tf.scale, tf.origin_y + yr * tf.scale)

    def image_to_world(self, n: int, px: float, py: float) -> Tuple[float, float]:
        tf = self.transform_at(n)
        xr = (px - tf.origin_x) / tf.scale
        yr = (py - tf.origin_y) / tf.scale
        if self.y_up:
            yr = -yr
        return rotate((xr, yr), -tf.angle)

    def world_to_image_components(self, n: int, vx: float, vy: float) -> Tuple[float, float]:
        """Transform a vector (no translation)."""
        ox, oy = self.world_to_image(n, 0.0, 0.0)
        px, py = self.world_to_image(n, vx, vy)
        return (px - ox, py - oy)

    def scale_at(self, n: int) -> float:
        return self.transform_at(n).scale


class ReferenceFrame(ImageCoordSystem):
    """
    Coordinate system whose origin follows a track.

    Scale and angle come from the wrapped system; at each frame the origin sits
    on the origin track's image position. Frames where the track has no valid
    step keep the last known origin (or the wrapped system's origin before any).
    """

    def __init__(self, coords: ImageCoordSystem, origin_track):
        self.coords = coords
        self.origin_track = origin_track
        self.support = ChangeSupport()
        self._origins: Dict[int, Tuple[float, float]] = {}
        self._origin_frames: List[int] = []
        coords.add_listener("transform", self._on_base_transform)
        origin_track.add_listener("step", self._on_origin_steps)
        origin_track.add_listener("steps", self._on_origin_steps)
        self.set_origins()

    def dispose(self) -> None:
        self.coords.remove_listener("transform", self._on_base_transform)
        self.origin_track.remove_listener("step", self._on_origin_steps)
        self.origin_track.remove_listener("steps", self._on_origin_steps)

    @property
    def y_up(self) -> bool:
        return self.coords.y_up

    @property
    def key_frames(self) -> List[int]:
        return self.coords.key_frames

    def origin_chain(self) -> Tuple:
        return (self.origin_track,) + self.coords.origin_chain()

    def base(self) -> ImageCoordSystem:
        return self.coords.base()

    def transform_at(self, n: int) -> FrameTransform:
        tf = self.coords.transform_at(n)
        ox, oy = self._origin_at(n)
        return replace(tf, origin_x=ox, origin_y=oy)

    def _set(self, frame: Optional[int], **changes) -> None:
        changes.pop("origin_x", None)
        changes.pop("origin_y", None)
        if changes:
            self.coords._set(frame, **changes)

    def _origin_at(self, n: int) -> Tuple[float, float]:
        i = bisect.bisect_right(self._origin_frames, n) - 1
        if i < 0:
            return self.coords.world_to_image(n, 0.0, 0.0)
        return self._origins[self._origin_frames[i]]

    def world_to_image(self, n: int, x: float, y: float) -> Tuple[float, float]:
        bx, by = self.coords.world_to_image(n, x, y)
        zx, zy = self.coords.world_to_image(n, 0.0, 0.0)
        ox, oy = self._origin_at(n)
        return (bx - zx + ox, by - zy + oy)

    def image_to_world(self, n: int, px: float, py: float) -> Tuple[float, float]:
        zx, zy = self.coords.world_to_image(n, 0.0, 0.0)
        ox, oy = self._origin_at(n)
        return self.coords.image_to_world(n, px - ox + zx, py - oy + zy)

    def set_origins(self) -> None:
        """Re-read origins from the origin track; fires "transform" if they changed."""
        origins: Dict[int, Tuple[float, float]] = {}
        for n, step in enumerate(self.origin_track.steps):
            if step is not None and step.valid:
                origins[n] = (step.x, step.y)
        if origins == self._origins:
            return
        self._origins = origins
        self._origin_frames = sorted(origins)
        logger.debug("reference frame origins set from %s (%d frames)",
                     self.origin_track.name, len(origins))
        self.support.fire("transform")

    def _on_base_transform(self, name, old, new) -> None:
        self.support.fire("transform")

    def _on_origin_steps(self, name, old, new) -> None:
        self.set_origins()

