import pytest

from autosteer.errors import ErrorType, GenerationError
from autosteer.field_files import (
    headland_file_name,
    load_headland,
    load_headlands,
    load_tracks,
    save_headland,
    save_tracks,
    track_file_name,
)
from autosteer.models import HeadlandLine, HeadlandMode, ReferenceLine

SQUARE = [(0, 0), (100, 0), (100, 100), (0, 100)]


def write(directory, name, text):
    path = directory / name
    path.write_text(text)
    return path


class TestHeadlandFile:
    def test_closed_headland_round_trip(self, tmp_path):
        headland = HeadlandLine.from_coords(
            [(10.123456, 20.5), (90, 20.5), (90, 80), (10.123456, 80)],
            move_distance=12.5,
            mode=HeadlandMode.LINE,
        )
        save_headland(tmp_path, headland)
        loaded = load_headland(tmp_path)

        assert loaded.is_closed
        assert loaded.move_distance == 12.5
        assert loaded.mode is HeadlandMode.LINE
        assert len(loaded) == 4
        # points are written to the millimetre
        assert loaded.points[0][0] == pytest.approx(10.123, abs=1e-9)
        for saved, read in zip(headland.points, loaded.points):
            assert read[2] == pytest.approx(saved[2], abs=1e-5)

    def test_open_headland_round_trip(self, tmp_path):
        headland = HeadlandLine.from_coords(SQUARE, is_closed=False, move_distance=6.0)
        save_headland(tmp_path, headland)
        loaded = load_headland(tmp_path)
        assert not loaded.is_closed
        assert loaded.coords == SQUARE

    def test_file_layout(self, tmp_path):
        headland = HeadlandLine.from_coords(SQUARE, move_distance=6.0)
        path = save_headland(tmp_path, headland)
        with open(path) as f:
            lines = f.read().splitlines()
        assert lines[0] == "$HeadLines"
        assert lines[1] == "Headland"
        assert lines[2] == "6.0"
        assert lines[3] == "0"
        assert lines[4] == "0"
        assert lines[5] == "4"
        assert lines[6].startswith("0.000 , 0.000 , ")

    def test_cleared_headland(self, tmp_path):
        save_headland(tmp_path, None)
        assert load_headlands(tmp_path) == []
        assert load_headland(tmp_path) is None

    def test_missing_file(self, tmp_path):
        assert load_headlands(tmp_path) == []

    def test_short_paths_skipped(self, tmp_path):
        write(
            tmp_path,
            headland_file_name,
            "$HeadLines\nTiny\n5\n0\n0\n3\n0,0,0\n1,0,0\n1,1,0\n"
            "Big\n5\n1\n0\n4\n0,0,0\n10,0,0\n10,10,0\n0,10,0\n",
        )
        headlands = load_headlands(tmp_path)
        assert len(headlands) == 1
        assert headlands[0].mode is HeadlandMode.LINE

    def test_malformed_number(self, tmp_path):
        write(tmp_path, headland_file_name, "$HeadLines\nHeadland\nwide\n0\n0\n4\n")
        with pytest.raises(GenerationError) as e:
            load_headlands(tmp_path)
        assert e.value.error.error_type is ErrorType.BAD_INPUT_DATA

    def test_truncated(self, tmp_path):
        write(tmp_path, headland_file_name, "$HeadLines\nHeadland\n6\n0\n0\n4\n0,0,0\n10,0,0\n")
        with pytest.raises(GenerationError) as e:
            load_headlands(tmp_path)
        assert e.value.error.error_type is ErrorType.BAD_INPUT_DATA


class TestTrackFile:
    def test_round_trip(self, tmp_path):
        lines = [
            ReferenceLine((0, 0), (0, 100), "North"),
            ReferenceLine((5.5, -3.25), (120, 40), "Diagonal"),
        ]
        save_tracks(tmp_path, lines)
        loaded = load_tracks(tmp_path)
        assert [line.name for line in loaded] == ["North", "Diagonal"]
        assert loaded[1].point_a == pytest.approx((5.5, -3.25))
        assert loaded[1].point_b == pytest.approx((120, 40))

    def test_missing_file(self, tmp_path):
        assert load_tracks(tmp_path) == []

    def test_missing_header(self, tmp_path):
        write(tmp_path, track_file_name, "AB\n0\n0,0\n0,100\n0\n2\nTrue\n0\n")
        with pytest.raises(GenerationError):
            load_tracks(tmp_path)

    def test_nudge_moves_the_line(self, tmp_path):
        write(tmp_path, track_file_name, "$TrackLines\nAB\n0\n0,0\n0,100\n2.5\n2\nTrue\n0\n")
        line = load_tracks(tmp_path)[0]
        assert line.point_a == pytest.approx((2.5, 0))
        assert line.point_b == pytest.approx((2.5, 100))

    def test_curve_points_are_skipped(self, tmp_path):
        write(
            tmp_path,
            track_file_name,
            "$TrackLines\nCurve\n0\n0,0\n0,100\n0\n4\nTrue\n2\n0,0\n0,50\n"
            "AB\n0\n10,0\n10,100\n0\n2\nFalse\n0\n",
        )
        loaded = load_tracks(tmp_path)
        assert [line.name for line in loaded] == ["Curve", "AB"]

    def test_bad_visibility_flag(self, tmp_path):
        write(tmp_path, track_file_name, "$TrackLines\nAB\n0\n0,0\n0,100\n0\n2\nmaybe\n0\n")
        with pytest.raises(GenerationError) as e:
            load_tracks(tmp_path)
        assert e.value.error.error_type is ErrorType.BAD_INPUT_DATA
