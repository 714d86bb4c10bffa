"""
Tests for ParticleModel stepping: lazy extension, reset, trimming,
frame ranges, deferred derivatives and coordinate changes.
"""

import math

import numpy as np
import pytest

from conftest import make_particle
from trackcore.constants import TRACE_PTS_PER_STEP
from trackcore.coords import ImageCoordSystem, ReferenceFrame
from trackcore.errors import ModelConfigError, TrackLockedError
from trackcore.scene import Scene
from trackcore.stepper import StepperState
from trackcore.timeline import VideoClip


class TestRefreshSteps:
    def test_added_model_has_initial_step(self, scene, linear_particle):
        scene.add_track(linear_particle)
        assert linear_particle.last_valid_frame == 0
        assert linear_particle.get_step(0).position == (0.0, 0.0)
        assert len(linear_particle.trace) == 1

    def test_steps_only_to_current_frame(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(5)
        assert linear_particle.last_valid_frame == 5
        assert len(linear_particle.steps) == 6
        assert linear_particle.get_step(6) is None

    def test_linear_motion_at_frame_five(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(5)
        x, y = linear_particle.world_position(5)
        assert x == pytest.approx(5.0, abs=1e-9)
        assert y == pytest.approx(0.0, abs=1e-9)

    def test_trace_has_ten_points_per_step(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(3)
        assert len(linear_particle.trace) == 1 + 3 * TRACE_PTS_PER_STEP
        assert linear_particle.trace.x[15] == pytest.approx(1.5)

    def test_refresh_is_idempotent(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(4)
        trace_x = linear_particle.trace.x.copy()
        steps = [s.position for s in linear_particle.steps]
        linear_particle.refresh_steps()
        linear_particle.refresh_steps()
        np.testing.assert_array_equal(linear_particle.trace.x, trace_x)
        assert [s.position for s in linear_particle.steps] == steps

    def test_going_back_keeps_steps(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(6)
        scene.set_frame_number(2)
        assert linear_particle.last_valid_frame == 6

    def test_spring_oscillates(self, scene):
        spring = make_particle("spring", fx="-k*x", x=1.0, iterations=100)
        spring.set_parameter("k", (math.pi / 4) ** 2)
        scene.add_track(spring)
        scene.set_frame_number(4)
        # half period at t=4 with omega = pi/4
        x, _ = spring.world_position(4)
        assert x == pytest.approx(-1.0, abs=1e-6)

    def test_analytic_model(self, scene, analytic_model):
        scene.add_track(analytic_model)
        scene.set_frame_number(3)
        assert analytic_model.get_step(3).position == pytest.approx((6.0, 9.0))
        assert analytic_model.trace.y[5] == pytest.approx(0.25)

    def test_state_returns_to_idle(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(3)
        assert linear_particle.status is StepperState.IDLE

    def test_step_size_two(self):
        scene = Scene(VideoClip(frame_count=11, step_size=2, frame_duration=0.5))
        model = make_particle(vx=1.0)
        scene.add_track(model)
        scene.set_frame_number(6)
        assert model.last_valid_frame == 6
        assert model.get_step(5) is None
        assert model.world_position(6)[0] == pytest.approx(3.0)
        assert len(model.trace) == 1 + 3 * TRACE_PTS_PER_STEP


class TestDerivatives:
    def test_central_difference_velocity(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(5)
        assert linear_particle.velocity(3) == pytest.approx((1.0, 0.0))
        assert linear_particle.acceleration(3) == pytest.approx((0.0, 0.0), abs=1e-9)
        assert linear_particle.velocity(0) is None
        assert linear_particle.velocity(5) is None

    def test_deferred_while_playing(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_playing(True)
        scene.set_frame_number(5)
        assert linear_particle.velocity(3) is None
        assert linear_particle.refresh_derivs_later
        scene.set_playing(False)
        assert linear_particle.velocity(3) == pytest.approx((1.0, 0.0))
        assert not linear_particle.refresh_derivs_later


class TestFrameRange:
    def test_end_frame_limits_stepping(self, scene, linear_particle):
        scene.add_track(linear_particle)
        linear_particle.set_end_frame(3)
        scene.set_frame_number(9)
        assert linear_particle.last_valid_frame == 3
        assert len(linear_particle.steps) == 4

    def test_end_frame_at_clip_end_is_unbounded(self, scene, linear_particle):
        scene.add_track(linear_particle)
        linear_particle.set_end_frame(3)
        linear_particle.set_end_frame(20)
        assert linear_particle.end_frame is None

    def test_trim_then_extend_reproduces_trajectory(self, scene, linear_particle):
        linear_particle.motion.force_y.set_expression("-y - 0.1*vy")
        linear_particle.motion.set_initial(y=2.0)
        scene.add_track(linear_particle)
        scene.set_frame_number(9)
        trace_x = linear_particle.trace.x.copy()
        trace_y = linear_particle.trace.y.copy()
        steps = [s.position for s in linear_particle.steps]

        linear_particle.set_end_frame(4)
        assert linear_particle.last_valid_frame == 4
        assert len(linear_particle.trace) == 1 + 4 * TRACE_PTS_PER_STEP
        assert 4 in linear_particle.key_frames
        assert linear_particle.baseline_frame(3) == 0
        assert linear_particle.baseline_frame(7) == 4

        linear_particle.set_end_frame(9)
        assert linear_particle.last_valid_frame == 9
        np.testing.assert_array_equal(linear_particle.trace.x, trace_x)
        np.testing.assert_array_equal(linear_particle.trace.y, trace_y)
        assert [s.position for s in linear_particle.steps] == steps

    def test_trim_without_snapshot_resteps_from_key_frame(self, scene, linear_particle):
        linear_particle.motion.force_y.set_expression("-y - 0.1*vy")
        linear_particle.motion.set_initial(y=2.0)
        scene.add_track(linear_particle)
        scene.set_frame_number(9)
        expected = linear_particle.frame_states[4].copy()
        trace_y = linear_particle.trace.y.copy()
        for frame in [f for f in linear_particle.frame_states if f != 0]:
            del linear_particle.frame_states[frame]

        linear_particle.set_end_frame(4)
        assert linear_particle.last_valid_frame == 4
        np.testing.assert_array_equal(linear_particle.state, expected)
        np.testing.assert_array_equal(linear_particle.frame_states[4], expected)

        linear_particle.set_end_frame(9)
        np.testing.assert_array_equal(linear_particle.trace.y, trace_y)

    def test_start_frame_moves_initial_values(self, scene, linear_particle):
        scene.add_track(linear_particle)
        linear_particle.set_start_frame(2)
        assert linear_particle.initial_time == 2.0
        scene.set_frame_number(5)
        assert linear_particle.get_step(1) is None
        assert linear_particle.world_position(2) == pytest.approx((0.0, 0.0))
        assert linear_particle.world_position(5)[0] == pytest.approx(3.0)
        assert linear_particle.key_frames[0] == 2

    def test_start_frame_clamped_to_end(self, scene, linear_particle):
        scene.add_track(linear_particle)
        linear_particle.set_end_frame(3)
        linear_particle.set_start_frame(6)
        assert linear_particle.start_frame == 3

    def test_events_fired(self, scene, linear_particle):
        scene.add_track(linear_particle)
        seen = []
        linear_particle.add_listener("model_end", lambda *e: seen.append(e))
        linear_particle.add_listener("model_start", lambda *e: seen.append(e))
        linear_particle.set_end_frame(5)
        linear_particle.set_start_frame(1)
        assert seen == [("model_end", None, 5), ("model_start", 0, 1)]


class TestDefinitionChanges:
    def test_mass_change_resteps(self, scene):
        model = make_particle(fx="1")
        scene.add_track(model)
        scene.set_frame_number(2)
        assert model.world_position(2)[0] == pytest.approx(2.0)
        model.mass = 2.0
        assert model.last_valid_frame == 2
        assert model.world_position(2)[0] == pytest.approx(1.0)

    def test_initial_value_change(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(2)
        linear_particle.set_initial(x=10.0)
        assert linear_particle.world_position(2)[0] == pytest.approx(12.0)

    def test_adjusting_postpones_refresh(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(2)
        linear_particle.set_adjusting(True)
        linear_particle.set_initial(x=10.0)
        assert linear_particle.last_valid_frame == -1
        linear_particle.set_adjusting(False)
        assert linear_particle.world_position(2)[0] == pytest.approx(12.0)

    def test_solver_choice(self, scene, linear_particle):
        scene.add_track(linear_particle)
        linear_particle.set_solver("Euler")
        assert linear_particle.solver_name == "Euler"
        with pytest.raises(ModelConfigError):
            linear_particle.set_solver("Leapfrog")

    def test_negative_mass_rejected(self, linear_particle):
        with pytest.raises(ModelConfigError):
            linear_particle.mass = -1.0


class TestLockingAndEnvelope:
    def test_model_steps_locked(self, scene, linear_particle):
        scene.add_track(linear_particle)
        with pytest.raises(TrackLockedError):
            linear_particle.set_step(0, 1.0, 1.0)

    def test_offscreen_samples_invalid(self, scene):
        fast = make_particle("fast", vx=3000.0)
        warnings = []
        scene.add_listener("offscreen", lambda *e: warnings.append(e[2]))
        scene.add_track(fast)
        scene.set_frame_number(5)
        assert fast.get_step(2).valid
        assert not fast.get_step(3).valid
        assert math.isnan(fast.trace.x[-1])
        assert warnings == [fast]
        assert fast.invalid_warning_shown
        assert scene._hold == 0

    def test_failing_force_releases_painting_hold(self, scene):
        def explode(*state):
            raise RuntimeError("force law failed")

        model = make_particle("bad", fx=explode)
        scene.add_track(model)
        with pytest.raises(RuntimeError):
            scene.set_frame_number(3)
        assert scene._hold == 0
        assert model.status is StepperState.IDLE
        assert model.locked
        assert not model.trace.staging
        assert model.last_valid_frame == 0

    def test_nan_force_gives_invalid_steps(self, scene):
        model = make_particle(fx="x/0", vx=1.0)
        scene.add_track(model)
        scene.set_frame_number(2)
        assert not model.get_step(2).valid


class TestCoordinates:
    def test_scale_change_resteps_in_image_space(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(5)
        scene.coords.set_scale(2.0)
        assert linear_particle.get_step(5).x == pytest.approx(10.0)
        assert linear_particle.world_position(5)[0] == pytest.approx(5.0)

    def test_origin_model_reports_zero(self, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_coords(ReferenceFrame(scene.coords, linear_particle))
        scene.set_frame_number(5)
        assert linear_particle.is_use_default_reference_frame()
        assert linear_particle.world_position(5) == pytest.approx((0.0, 0.0), abs=1e-9)

    def test_default_frame_model_shows_relative_motion(self, scene, linear_particle):
        other = make_particle("other", vx=2.0)
        other.set_use_default_reference_frame(True)
        scene.add_track(linear_particle)
        scene.add_track(other)
        scene.set_coords(ReferenceFrame(scene.coords, linear_particle))
        scene.set_frame_number(5)
        assert other.world_position(5) == pytest.approx((5.0, 0.0), abs=1e-9)

    def test_undefined_parameter_gives_invalid_steps(self, scene):
        model = make_particle(fx="-k*x", vx=1.0)
        scene.add_track(model)
        scene.set_frame_number(3)
        assert model.last_valid_frame == 3
        assert not model.get_step(3).valid

    def test_replaced_reference_frame_stops_listening(self, scene, linear_particle):
        scene.add_track(linear_particle)
        frame = ReferenceFrame(scene.coords, linear_particle)
        scene.set_coords(frame)
        scene.set_coords(ImageCoordSystem())
        seen = []
        frame.add_listener("transform", lambda *e: seen.append(e[0]))
        scene.set_frame_number(5)
        assert seen == []

    def test_wrapped_reference_frame_kept(self, scene, linear_particle):
        other = make_particle("other", vx=2.0)
        scene.add_track(linear_particle)
        scene.add_track(other)
        inner = ReferenceFrame(scene.coords, other)
        scene.set_coords(inner)
        scene.set_coords(ReferenceFrame(inner, linear_particle))
        seen = []
        inner.add_listener("transform", lambda *e: seen.append(e[0]))
        scene.set_frame_number(5)
        assert seen

    def test_y_up_coordinates(self):
        coords = ImageCoordSystem(origin=(100.0, 100.0), scale=10.0, y_up=True)
        scene = Scene(VideoClip(frame_count=5, frame_duration=1.0), coords)
        model = make_particle(vy=1.0)
        scene.add_track(model)
        scene.set_frame_number(2)
        assert model.get_step(2).position == pytest.approx((100.0, 80.0))
        assert model.world_position(2) == pytest.approx((0.0, 2.0))
