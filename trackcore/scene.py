#!/usr/bin/env python3
"""
Scene: the shared state every track and model reads from.

The scene owns the clip, the active coordinate system, the current frame and
the playing flag, plus the list of tracks. Moving the current frame forward is
what drives models to step further ("draw triggers refresh").

Repaint batching
- painting_held() defers repaint notifications until the outermost block exits,
  so a refresh touching several tracks produces one "repaint" event.

Thread-safety
- Public mutators take an RLock, so a viewer thread can read consistent state.
  Stepping itself runs in whichever thread changes the frame.
"""
import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .coords import ImageCoordSystem, ReferenceFrame
from .data_models import ChangeSupport
from .stepper import ParticleModel
from .timeline import VideoClip
from .tracks import ParticleTrack

logger = logging.getLogger(__name__)


def _wraps(coords: ImageCoordSystem, inner: ImageCoordSystem) -> bool:
    while isinstance(coords, ReferenceFrame):
        coords = coords.coords
        if coords is inner:
            return True
    return False


class Scene:
    """
    Container for tracks, clip, coordinate system and playback position.

    Args:
        clip: Video timeline (default: 10 frames at 30 fps)
        coords: World-to-image coordinate system (default: identity)
    """

    def __init__(self, clip: Optional[VideoClip] = None, coords: Optional[ImageCoordSystem] = None):
        self.lock = threading.RLock()
        self.clip = clip or VideoClip()
        self._coords = coords or ImageCoordSystem()
        self._coords.add_listener("transform", self._on_transform)
        self.tracks: List[ParticleTrack] = []
        self.frame_number = self.clip.first_frame_number
        self.playing = False
        self.support = ChangeSupport()
        self.repaint_count = 0
        self._hold = 0
        self._repaint_pending = False

    # ----- listeners -----
    def add_listener(self, name: str, callback) -> None:
        self.support.add_listener(name, callback)

    def remove_listener(self, name: str, callback) -> None:
        self.support.remove_listener(name, callback)

    # ----- tracks -----
    def add_track(self, track: ParticleTrack) -> ParticleTrack:
        with self.lock:
            if self.get_track(track.name) is not None:
                raise ValueError(f"duplicate track name {track.name!r}")
            track.scene = self
            self.tracks.append(track)
            if isinstance(track, ParticleModel):
                track.refresh_initial_time()
                track.invalidate()
            logger.info("added track %s", track.name)
            self.support.fire("tracks", None, track)
            self.resolve_pending()
            self.draw()
            return track

    def remove_track(self, track: ParticleTrack) -> None:
        with self.lock:
            if track not in self.tracks:
                return
            if isinstance(track, ParticleModel):
                if track.system is not None:
                    track.system.remove_particle(track)
                if track.motion.kind == "system":
                    track.set_particles([])
            self.tracks.remove(track)
            track.scene = None
            self.support.fire("tracks", track, None)
            self.repaint()

    def get_track(self, name: str) -> Optional[ParticleTrack]:
        for track in self.tracks:
            if track.name == name:
                return track
        return None

    def models(self) -> List[ParticleModel]:
        return [t for t in self.tracks if isinstance(t, ParticleModel)]

    def resolve_pending(self) -> None:
        """Retry member lookups for systems loaded before their particles."""
        for model in self.models():
            if model.motion.kind == "system" and not model.motion.is_resolved():
                if model.resolve_particles():
                    logger.info("resolved members of system %s", model.name)

    # ----- playback -----
    def set_frame_number(self, n: int) -> None:
        with self.lock:
            clip = self.clip
            n = min(max(int(n), clip.first_frame_number), clip.last_frame_number)
            if n == self.frame_number:
                return
            old = self.frame_number
            self.frame_number = n
            self.support.fire("frame", old, n)
            self.draw()

    def step_forward(self) -> None:
        self.set_frame_number(self.frame_number + self.clip.step_size)

    def set_playing(self, playing: bool) -> None:
        with self.lock:
            self.playing = bool(playing)
            if not self.playing:
                for model in self.models():
                    model.refresh_derivs_if_needed()
                self.repaint()

    def set_clip(self, clip: VideoClip) -> None:
        """Replace the timeline; every model is restepped."""
        with self.lock:
            self.clip = clip
            self.frame_number = min(max(self.frame_number, clip.first_frame_number), clip.last_frame_number)
            for model in self.models():
                model.refresh_initial_time()
                model.invalidate()
            self.support.fire("clip", None, clip)
            self.draw()

    def draw(self) -> None:
        """Bring every visible model up to the current frame, then repaint."""
        with self.lock:
            self.resolve_pending()
            with self.painting_held():
                for model in self.models():
                    if model.visible and model.system is None and self.frame_number > model.last_valid_frame:
                        model.refresh_steps()
                self.repaint()

    # ----- coordinates -----
    @property
    def coords(self) -> ImageCoordSystem:
        return self._coords

    def set_coords(self, coords: ImageCoordSystem) -> None:
        with self.lock:
            if coords is self._coords:
                return
            old = self._coords
            old.remove_listener("transform", self._on_transform)
            if isinstance(old, ReferenceFrame) and not _wraps(coords, old):
                old.dispose()
            self._coords = coords
            coords.add_listener("transform", self._on_transform)
            self._on_transform("transform", None, None)

    def _on_transform(self, name, old, new) -> None:
        with self.painting_held():
            for model in self.models():
                model.on_transform_changed()
            for track in self.tracks:
                track.update_derivatives()
            self.repaint()

    # ----- painting -----
    @contextmanager
    def painting_held(self) -> Iterator[None]:
        self._hold += 1
        try:
            yield
        finally:
            self._hold -= 1
            if self._hold == 0 and self._repaint_pending:
                self._repaint_pending = False
                self.repaint()

    def repaint(self) -> None:
        if self._hold > 0:
            self._repaint_pending = True
            return
        self.repaint_count += 1
        self.support.fire("repaint")

    def warn_offscreen(self, model: ParticleModel) -> None:
        self.support.fire("offscreen", None, model)
