"""
Pytest configuration and shared fixtures for the stepper tests.

Provides clips, scenes and ready-made particle models.
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from trackcore.dynamics import AnalyticMotion, CoupledPair, SingleParticle
from trackcore.scene import Scene
from trackcore.stepper import ParticleModel
from trackcore.timeline import VideoClip

# =============================================================================
# Timeline / Scene Fixtures
# =============================================================================


@pytest.fixture
def clip() -> VideoClip:
    """Ten frames, one second apart."""
    return VideoClip(frame_count=10, frame_duration=1.0)


@pytest.fixture
def scene(clip) -> Scene:
    """Scene with an identity coordinate system."""
    return Scene(clip)


# =============================================================================
# Model Fixtures
# =============================================================================


def make_particle(name="p", mass=1.0, fx="0", fy="0", iterations=20, **initial) -> ParticleModel:
    motion = SingleParticle(fx, fy, initial=initial)
    return ParticleModel(name, motion, mass=mass, iterations_per_step=iterations)


@pytest.fixture
def linear_particle() -> ParticleModel:
    """Force-free particle from the origin moving at 1 unit/s along x."""
    return make_particle("linear", vx=1.0)


@pytest.fixture
def analytic_model() -> ParticleModel:
    """x = 2t, y = t^2."""
    return ParticleModel("analytic", AnalyticMotion("2*t", "t**2"))


@pytest.fixture
def pair_scene(scene):
    """Two attracting particles with zero total momentum, masses 1 and 3."""
    a = make_particle("A", mass=1.0, x=-1.0, vy=-0.6)
    b = make_particle("B", mass=3.0, x=1.0, vy=0.2)
    pair = ParticleModel("AB", CoupledPair("-1/r**2", "0"))
    for track in (a, b, pair):
        scene.add_track(track)
    pair.set_particles([a, b])
    return scene, a, b, pair
