"""
Tests for JSON save/load and tabular data export.
"""

import csv
import json
import math

import pytest

from conftest import make_particle
from trackcore.export import BASE_COLUMNS, SYSTEM_COLUMNS, columns, data_table, export_csv
from trackcore.persistence import load_into, load_scene, save_scene, scene_to_dict, track_to_dict
from trackcore.scene import Scene
from trackcore.stepper import ParticleModel
from trackcore.timeline import VideoClip
from trackcore.tracks import ParticleTrack


class TestSave:
    def test_particle_fields(self, scene):
        model = make_particle("A", mass=2.0, fx="-k*x", x=1.0)
        model.set_parameter("k", 3.0)
        scene.add_track(model)
        model.set_end_frame(6)
        model.set_start_frame(2)
        data = track_to_dict(model)
        assert data["type"] == "particle"
        assert data["mass"] == 2.0
        assert data["start_frame"] == 2
        assert data["end_frame"] == 6
        assert data["functions"] == {"fx": "-k*x", "fy": "0"}
        assert data["parameters"] == {"k": 3.0}
        assert data["initial"]["x"] == 1.0

    def test_defaults_omitted(self, scene, linear_particle):
        scene.add_track(linear_particle)
        data = track_to_dict(linear_particle)
        assert "start_frame" not in data
        assert "end_frame" not in data

    def test_system_fields(self, pair_scene):
        scene, a, b, pair = pair_scene
        pair.inspector = (40, 60)
        data = track_to_dict(pair)
        assert data["type"] == "system"
        assert data["particles"] == ["A", "B"]
        assert data["inspector"] == [40, 60]
        assert "mass" not in data


class TestLoad:
    def test_round_trip_through_file(self, tmp_path, pair_scene):
        scene, a, b, pair = pair_scene
        scene.set_frame_number(5)
        path = tmp_path / "scene.json"
        save_scene(scene, str(path))

        loaded = load_scene(str(path))
        assert [t.name for t in loaded.tracks] == ["A", "B", "AB"]
        pair2 = loaded.get_track("AB")
        assert [p.name for p in pair2.motion.particles] == ["A", "B"]
        assert loaded.get_track("B").mass == 3.0
        loaded.set_frame_number(5)
        assert pair2.world_position(5) == pytest.approx(pair.world_position(5), abs=1e-9)

    def test_system_before_members_resolves(self, scene):
        data = {"tracks": [
            {"type": "system", "name": "AB", "particles": ["A", "B"], "functions": {"fr": "-1/r**2"}},
            {"type": "particle", "name": "A", "initial": {"x": -1.0}},
            {"type": "particle", "name": "B", "initial": {"x": 1.0}},
        ]}
        load_into(scene, data)
        pair = scene.get_track("AB")
        assert pair.motion.is_resolved()
        assert pair.last_valid_frame == 0

    def test_missing_member_stays_pending(self, scene):
        data = {"tracks": [
            {"type": "system", "name": "AB", "particles": ["A", "B"]},
            {"type": "particle", "name": "A"},
        ]}
        load_into(scene, data)
        pair = scene.get_track("AB")
        assert not pair.motion.is_resolved()
        assert pair.last_valid_frame == -1

        scene.add_track(make_particle("B", x=1.0))
        assert pair.motion.is_resolved()
        assert [p.name for p in pair.motion.particles] == ["A", "B"]

    def test_bad_entries_skipped(self, scene):
        data = {"tracks": [
            {"type": "particle"},
            {"type": "particle", "name": "bad", "functions": {"fx": "1 +"}},
            {"type": "comet", "name": "c"},
            {"type": "analytic", "name": "ok", "functions": {"x": "t"}},
        ]}
        added = load_into(scene, data)
        assert [t.name for t in added] == ["ok"]

    def test_undefined_parameter_loads_and_steps_invalid(self, tmp_path):
        path = tmp_path / "scene.json"
        path.write_text(json.dumps({"tracks": [
            {"type": "particle", "name": "A", "functions": {"fx": "-k*x"}, "initial": {"vx": 1.0}},
        ]}))
        loaded = load_scene(str(path))
        model = loaded.get_track("A")
        loaded.set_frame_number(3)
        assert model.last_valid_frame == 3
        assert model.get_step(0).valid
        assert not model.get_step(3).valid

    def test_hand_marked_track(self, scene):
        data = {"tracks": [{"type": "track", "name": "hand", "steps": [[0, 1.0, 2.0], [2, 3.0, 4.0]]}]}
        load_into(scene, data)
        track = scene.get_track("hand")
        assert isinstance(track, ParticleTrack)
        assert not isinstance(track, ParticleModel)
        assert track.get_step(2).position == (3.0, 4.0)

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        assert load_scene(str(path)) is None
        assert load_scene(str(tmp_path / "missing.json")) is None

    def test_clip_restored(self, tmp_path):
        scene = Scene(VideoClip(frame_count=20, step_size=2, frame_duration=0.25))
        path = tmp_path / "clip.json"
        save_scene(scene, str(path))
        loaded = load_scene(str(path))
        assert loaded.clip.step_size == 2
        assert loaded.clip.frame_duration == 0.25
        assert json.loads(path.read_text())["tracks"] == []

    def test_scene_dict_lists_tracks(self, scene, linear_particle):
        scene.add_track(linear_particle)
        assert [t["name"] for t in scene_to_dict(scene)["tracks"]] == ["linear"]


class TestExport:
    def test_columns(self, pair_scene):
        scene, a, b, pair = pair_scene
        assert columns(a) == list(BASE_COLUMNS)
        assert columns(pair) == list(BASE_COLUMNS) + list(SYSTEM_COLUMNS)

    def test_particle_rows(self, scene):
        model = make_particle("A", mass=2.0, vx=1.0)
        scene.add_track(model)
        scene.set_frame_number(9)
        table = data_table(model)
        assert table.shape == (10, len(BASE_COLUMNS))
        row = table[5]
        assert row[0] == pytest.approx(5.0)  # t
        assert row[1] == pytest.approx(5.0)  # x
        assert row[5] == pytest.approx(1.0)  # vx
        assert row[7] == pytest.approx(1.0)  # v
        assert row[15] == pytest.approx(2.0)  # px
        assert row[14] == 5
        assert math.isnan(table[0][5])

    def test_unstepped_rows_are_nan(self, scene, linear_particle):
        scene.add_track(linear_particle)
        table = data_table(linear_particle)
        assert math.isnan(table[4][1])
        assert table[4][0] == pytest.approx(4.0)

    def test_system_relative_columns(self, pair_scene):
        scene, a, b, pair = pair_scene
        scene.set_frame_number(3)
        table = data_table(pair)
        assert table[0][19] == pytest.approx(2.0)
        assert table[0][20] == pytest.approx(math.pi)
        assert math.isnan(table[5][19])

    def test_csv(self, tmp_path, scene, linear_particle):
        scene.add_track(linear_particle)
        scene.set_frame_number(3)
        path = tmp_path / "out.csv"
        export_csv(linear_particle, str(path))
        with open(path, newline="") as f:
            rows = list(csv.reader(f))
        assert rows[0] == list(BASE_COLUMNS)
        assert len(rows) == 11
        assert float(rows[3][1]) == pytest.approx(2.0)
        assert rows[9][1] == ""
