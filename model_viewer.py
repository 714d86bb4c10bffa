#!/usr/bin/env python3
"""
Model viewer: a Pygame window that plays a scene of model-driven tracks.

What this module does
- Loads a scene JSON (see trackcore.persistence) or builds a small demo scene.
- Plays the clip frame by frame; advancing the frame is what makes models step.
- Draws, in image space: coordinate axes, sub-step traces, the Step at the
  current frame and (optionally) velocity vectors.

Controls
- Space: play/pause | Right/Left: next/previous step | Home: first frame
- Wheel: zoom | Right/Middle-drag: pan | V: toggle velocity vectors

Running
1) Install dependencies: `pip install -e .`
2) Run: `python model_viewer.py [scene.json]`
"""

import argparse
import logging
import math
import time
from typing import Optional, Tuple

import pygame
from pygame import gfxdraw

from trackcore.constants import (
    AXES_COLOR,
    BACKGROUND_COLOR,
    GRID_COLOR,
    SAFE_COORD_LIMIT,
    STEP_COLOR,
    SYSTEM_TRACK_COLOR,
    VELOCITY_VECTOR_COLOR,
    VIEW_HEIGHT,
    VIEW_WIDTH,
)
from trackcore.coords import ImageCoordSystem
from trackcore.dynamics import CoupledPair, SingleParticle
from trackcore.logging_config import setup_logging
from trackcore.persistence import load_scene
from trackcore.scene import Scene
from trackcore.stepper import ParticleModel
from trackcore.timeline import VideoClip
from trackcore.vector_utils import clamp

logger = logging.getLogger("trackcore.viewer")


class ViewCamera:
    """
    Maps image pixels to window pixels (pan + zoom).
    """
    def __init__(self, offset=(0.0, 0.0), zoom=1.0):
        self.offset = [float(offset[0]), float(offset[1])]
        self.zoom_level = float(zoom)

    def to_screen(self, p: Tuple[float, float]) -> Tuple[float, float]:
        return ((p[0] - self.offset[0]) * self.zoom_level, (p[1] - self.offset[1]) * self.zoom_level)

    def to_image(self, s: Tuple[float, float]) -> Tuple[float, float]:
        return (s[0] / self.zoom_level + self.offset[0], s[1] / self.zoom_level + self.offset[1])

    def zoom(self, factor, pivot_screen: Tuple[int, int]):
        before = self.to_image(pivot_screen)
        self.zoom_level = clamp(self.zoom_level * factor, 0.05, 50.0)
        after = self.to_image(pivot_screen)
        self.offset[0] += before[0] - after[0]
        self.offset[1] += before[1] - after[1]

    def pan_pixels(self, dx_pixels, dy_pixels):
        self.offset[0] -= dx_pixels / self.zoom_level
        self.offset[1] -= dy_pixels / self.zoom_level


class ModelViewer:
    """
    Pygame loop: advances playback and draws the scene.
    """
    def __init__(self, scene: Scene):
        self.scene = scene
        self.camera = ViewCamera()
        self.surface = None
        self.clock = None
        self.running = True
        self.show_velocity = False
        self.dragging = False
        self.drag_start_screen = (0, 0)
        self._frame_clock = 0.0
        self._offscreen_msg: Optional[str] = None
        scene.add_listener("offscreen", self._on_offscreen)

    def _on_offscreen(self, name, old, model):
        self._offscreen_msg = f"{model.name}: positions beyond drawable area are not shown"

    def run(self):
        pygame.init()
        pygame.display.set_caption("Model Viewer")
        self.surface = pygame.display.set_mode((VIEW_WIDTH, VIEW_HEIGHT), pygame.RESIZABLE)
        self.clock = pygame.time.Clock()

        last_time = time.perf_counter()
        while self.running:
            now = time.perf_counter()
            real_dt = now - last_time
            last_time = now

            self.handle_events()
            if self.scene.playing:
                self.advance(real_dt)
            self.draw()
            self.clock.tick(60)

        pygame.quit()

    def advance(self, real_dt: float):
        clip = self.scene.clip
        self._frame_clock += real_dt
        if self._frame_clock < clip.mean_step_duration:
            return
        self._frame_clock = 0.0
        if self.scene.frame_number >= clip.last_frame_number:
            self.scene.set_playing(False)
            return
        self.scene.step_forward()

    def toggle_play(self):
        self.scene.set_playing(not self.scene.playing)

    def handle_events(self):
        scene = self.scene
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.running = False

            elif event.type == pygame.VIDEORESIZE:
                self.surface = pygame.display.set_mode((event.w, event.h), pygame.RESIZABLE)

            elif event.type == pygame.KEYDOWN:
                if event.key == pygame.K_SPACE:
                    self.toggle_play()
                elif event.key == pygame.K_RIGHT:
                    scene.step_forward()
                elif event.key == pygame.K_LEFT:
                    scene.set_frame_number(scene.frame_number - scene.clip.step_size)
                elif event.key == pygame.K_HOME:
                    scene.set_frame_number(scene.clip.first_frame_number)
                elif event.key == pygame.K_v:
                    self.show_velocity = not self.show_velocity

            elif event.type == pygame.MOUSEWHEEL:
                factor = 1.1 if event.y > 0 else 1.0 / 1.1
                self.camera.zoom(factor, pygame.mouse.get_pos())

            elif event.type == pygame.MOUSEBUTTONDOWN and event.button in (2, 3):
                self.dragging = True
                self.drag_start_screen = pygame.mouse.get_pos()

            elif event.type == pygame.MOUSEBUTTONUP and event.button in (2, 3):
                self.dragging = False

            elif event.type == pygame.MOUSEMOTION and self.dragging:
                mouse = pygame.mouse.get_pos()
                self.camera.pan_pixels(mouse[0] - self.drag_start_screen[0],
                                       mouse[1] - self.drag_start_screen[1])
                self.drag_start_screen = mouse

    def draw_axes(self, surf):
        scene = self.scene
        n = scene.frame_number
        w, h = surf.get_size()
        origin = self.camera.to_screen(scene.coords.world_to_image(n, 0.0, 0.0))
        o = _safe_point(origin)
        if o is None:
            return
        pygame.draw.line(surf, GRID_COLOR, (0, o[1]), (w, o[1]), 1)
        pygame.draw.line(surf, GRID_COLOR, (o[0], 0), (o[0], h), 1)
        reach = 60.0 / max(scene.coords.scale_at(n) * self.camera.zoom_level, 1e-9)
        x_tip = _safe_point(self.camera.to_screen(scene.coords.world_to_image(n, reach, 0.0)))
        if x_tip:
            pygame.draw.line(surf, AXES_COLOR, o, x_tip, 2)
            draw_arrow_head(surf, x_tip, o, AXES_COLOR)

    def draw_track(self, surf, track):
        n = self.scene.frame_number
        color = SYSTEM_TRACK_COLOR if isinstance(track, ParticleModel) and isinstance(track.motion, CoupledPair) \
            else track.color

        # trace up to the current frame; NaN samples break the polyline
        pts = []
        for x, y in zip(track.trace.x, track.trace.y):
            sp = _safe_point(self.camera.to_screen((x, y))) if not (math.isnan(x) or math.isnan(y)) else None
            if sp is None:
                if len(pts) > 1:
                    pygame.draw.aalines(surf, color, False, pts)
                pts = []
                continue
            pts.append(sp)
        if len(pts) > 1:
            pygame.draw.aalines(surf, color, False, pts)

        step = track.get_step(n)
        if step is None or not step.valid:
            return
        p = _safe_point(self.camera.to_screen(step.position))
        if p is None:
            return
        gfxdraw.filled_circle(surf, p[0], p[1], 5, color)
        gfxdraw.aacircle(surf, p[0], p[1], 6, STEP_COLOR)

        if self.show_velocity:
            v = track.velocity(n)
            if v is not None:
                vx, vy = self.scene.coords.world_to_image_components(n, v[0] * 0.1, v[1] * 0.1)
                end = _safe_point(self.camera.to_screen((step.x + vx, step.y + vy)))
                if end:
                    pygame.draw.line(surf, VELOCITY_VECTOR_COLOR, p, end, 2)
                    draw_arrow_head(surf, end, p, VELOCITY_VECTOR_COLOR)

    def draw(self):
        surf = self.surface
        surf.fill(BACKGROUND_COLOR)
        scene = self.scene
        with scene.lock:
            self.draw_axes(surf)
            for track in list(scene.tracks):
                if track.visible:
                    self.draw_track(surf, track)
            frame = scene.frame_number
            t = scene.clip.frame_time(frame)
            playing = scene.playing

        draw_text(surf, "Space: Play/Pause | Left/Right: step | Home: start | Wheel: zoom | V: velocities",
                  10, 10, (200, 200, 200))
        draw_text(surf, f"Frame {frame}  t={t:.3f}s  [{'Playing' if playing else 'Paused'}]", 10, 30, (200, 200, 200))
        if self._offscreen_msg:
            draw_text(surf, self._offscreen_msg, 10, 50, (255, 120, 120))
        pygame.display.flip()


_cached_font = None


def draw_text(surface, text, x, y, color):
    global _cached_font
    if not pygame.font.get_init():
        pygame.font.init()
    if _cached_font is None:
        _cached_font = pygame.font.SysFont("consolas", 16)
    img = _cached_font.render(text, True, color)
    surface.blit(img, (x, y))


def _safe_point(pt):
    x, y = pt
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    x, y = int(x), int(y)
    if -SAFE_COORD_LIMIT <= x <= SAFE_COORD_LIMIT and -SAFE_COORD_LIMIT <= y <= SAFE_COORD_LIMIT:
        return (x, y)
    return None


def draw_arrow_head(surface, tip, tail, color):
    dx = tip[0] - tail[0]
    dy = tip[1] - tail[1]
    if dx == 0 and dy == 0:
        return
    ang = math.atan2(dy, dx)
    size = 8
    left = (tip[0] - size * math.cos(ang - math.pi / 6), tip[1] - size * math.sin(ang - math.pi / 6))
    right = (tip[0] - size * math.cos(ang + math.pi / 6), tip[1] - size * math.sin(ang + math.pi / 6))
    left_s = _safe_point(left)
    right_s = _safe_point(right)
    if left_s and right_s:
        pygame.draw.polygon(surface, color, [tip, left_s, right_s])


# ============================================================
# Demo Scene and Application Entry
# ============================================================

def build_demo_scene() -> Scene:
    """A spring oscillator and a gravitating pair, 10 s at 30 fps, origin at window centre."""
    clip = VideoClip(frame_count=300, frame_duration=1 / 30.0)
    coords = ImageCoordSystem(origin=(VIEW_WIDTH / 2, VIEW_HEIGHT / 2), scale=100.0, y_up=True)
    scene = Scene(clip, coords)

    spring = ParticleModel("spring", SingleParticle("-k*x", "0", initial={"x": 2.0}, parameters={"k": 4.0}),
                           color=(120, 180, 255))
    a = ParticleModel("A", SingleParticle(initial={"x": -1.0, "vy": -0.8}), mass=1.0, color=(255, 160, 80))
    b = ParticleModel("B", SingleParticle(initial={"x": 1.0, "vy": 0.8}), mass=1.0, color=(255, 90, 160))
    pair = ParticleModel("AB", CoupledPair("-G*m1*m2/r**2", "0", {"G": 1.0, "m1": 1.0, "m2": 1.0}))
    for track in (spring, a, b, pair):
        scene.add_track(track)
    pair.set_particles([a, b])
    return scene


def main(argv=None):
    parser = argparse.ArgumentParser(description="Play a scene of model-driven particle tracks.")
    parser.add_argument("scene", nargs="?", help="scene JSON file")
    parser.add_argument("--debug", action="store_true", help="verbose logging")
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.debug else logging.INFO)
    scene = None
    if args.scene:
        scene = load_scene(args.scene)
        if scene is None:
            logger.error("could not read scene %s; using demo scene", args.scene)
    if scene is None:
        scene = build_demo_scene()

    ModelViewer(scene).run()


if __name__ == "__main__":
    main()
