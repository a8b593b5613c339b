from math import cos, pi, radians, sin

import pytest

from autosteer.geometry import get_heading, signed_distance_to_line
from autosteer.guidance import (
    compute_steering,
    current_guidance_line,
    follow_turn_path,
    is_heading_same_way,
    look_ahead_distance,
    update_integral,
)
from autosteer.models import GuidanceFilterState, Pose, ReferenceLine, VehicleConfig

NORTH_LINE = ReferenceLine((0, 0), (0, 100))


def straight_path(start, end_northing, spacing=0.5):
    count = int((end_northing - start[1]) / spacing)
    return [(start[0], start[1] + i * spacing, 0.0) for i in range(count + 1)]


class TestGuidanceLine:
    @pytest.mark.parametrize("heading_deg", [0, 37, 90, 145, 200, 315])
    @pytest.mark.parametrize("paths_away", [-3, 0, 2])
    def test_parallel_line_is_offset_by_whole_track_widths(self, heading_deg, paths_away):
        a = (10.0, -4.0)
        b = (a[0] + 80 * sin(radians(heading_deg)),
             a[1] + 80 * cos(radians(heading_deg)))
        reference = ReferenceLine(a, b)
        line = current_guidance_line(reference, paths_away, 6.0)

        assert get_heading(line.point_a, line.point_b) == pytest.approx(reference.heading)
        for point in (line.point_a, line.point_b):
            assert signed_distance_to_line(point, a, b) == pytest.approx(6.0 * paths_away)

    def test_positive_paths_are_to_the_right(self):
        line = current_guidance_line(NORTH_LINE, 1, 6.0)
        assert line.point_a == pytest.approx((6.0, 0.0))
        assert line.point_b == pytest.approx((6.0, 100.0))


class TestLookAhead:
    def test_hold_distance_at_low_speed(self):
        vehicle = VehicleConfig()
        assert look_ahead_distance(0.0, vehicle) == vehicle.look_ahead_hold
        assert look_ahead_distance(1.0, vehicle) == vehicle.look_ahead_hold

    def test_grows_with_speed(self):
        vehicle = VehicleConfig(look_ahead_hold=4.0, look_ahead_mult=1.4)
        assert look_ahead_distance(10.0, vehicle) == pytest.approx(5.4)
        assert look_ahead_distance(1.01, vehicle) > vehicle.look_ahead_hold

    def test_never_below_minimum(self):
        vehicle = VehicleConfig(look_ahead_hold=0.5, min_look_ahead=2.0, look_ahead_mult=0.1)
        assert look_ahead_distance(5.0, vehicle) == 2.0


def test_heading_same_way():
    assert is_heading_same_way(0.1, 0.0)
    assert is_heading_same_way(2 * pi - 0.1, 0.0)
    assert not is_heading_same_way(pi, 0.0)
    assert not is_heading_same_way(pi / 2 + 0.01, 0.0)


class TestIntegral:
    def test_zero_gain_resets_integral(self):
        prev = GuidanceFilterState(integral=0.1, previous_error=0.5, counter=3)
        state = update_integral(prev, 1.0, 10.0, 0.0)
        assert state.integral == 0.0
        assert state.previous_error == 0.0

    def test_accumulates_against_the_error(self):
        state = update_integral(GuidanceFilterState(), 1.0, 10.0, 1.0)
        assert state.previous_error == pytest.approx(0.2)
        assert state.integral == pytest.approx(-0.004)

    def test_decays_below_minimum_speed(self):
        state = update_integral(GuidanceFilterState(integral=0.1), 1.0, 1.0, 1.0)
        assert state.integral == pytest.approx(0.095)

    def test_decays_while_turning(self):
        state = update_integral(
            GuidanceFilterState(integral=0.1), 1.0, 10.0, 1.0, allow_accumulate=False
        )
        assert state.integral == pytest.approx(0.095)

    def test_clamped_to_limit(self):
        state = GuidanceFilterState()
        for _ in range(2000):
            state = update_integral(state, -5.0, 10.0, 1.0)
        assert -0.2 <= state.integral <= 0.2


class TestPurePursuit:
    def test_on_line_steers_straight(self):
        pose = Pose(0.0, 50.0, 0.0, 2.0)
        result = compute_steering(pose, NORTH_LINE, 0, GuidanceFilterState(), VehicleConfig())
        assert result.steer_angle == pytest.approx(0.0, abs=1e-9)
        assert result.cross_track_error == pytest.approx(0.0)
        assert result.is_heading_same_way

    def test_right_of_line_steers_left(self):
        pose = Pose(1.0, 50.0, 0.0, 2.0)
        result = compute_steering(pose, NORTH_LINE, 0, GuidanceFilterState(), VehicleConfig())
        assert result.steer_angle < 0
        assert result.cross_track_error == pytest.approx(1.0)

    def test_follows_the_offset_line(self):
        pose = Pose(6.0, 50.0, 0.0, 2.0)
        result = compute_steering(pose, NORTH_LINE, 1, GuidanceFilterState(), VehicleConfig())
        assert result.steer_angle == pytest.approx(0.0, abs=1e-9)
        assert result.guidance_line.point_a == pytest.approx((6.0, 0.0))

    def test_driving_b_to_a(self):
        # heading south, one metre east is to the left of travel
        pose = Pose(1.0, 50.0, pi, 2.0)
        result = compute_steering(pose, NORTH_LINE, 0, GuidanceFilterState(), VehicleConfig())
        assert not result.is_heading_same_way
        assert result.steer_angle > 0
        assert result.cross_track_error == pytest.approx(-1.0)

    def test_steer_angle_clamped(self):
        vehicle = VehicleConfig()
        pose = Pose(0.0, 50.0, radians(80), 0.0)
        result = compute_steering(pose, NORTH_LINE, 0, GuidanceFilterState(), vehicle)
        assert result.steer_angle == -vehicle.max_steer_angle

    def test_degenerate_line_skips_guidance(self):
        pose = Pose(0.0, 0.0, 0.0, 2.0)
        assert compute_steering(pose, None, 0, GuidanceFilterState(), VehicleConfig()) is None
        point = ReferenceLine((5, 5), (5, 5.001))
        assert compute_steering(pose, point, 0, GuidanceFilterState(), VehicleConfig()) is None


class TestStanley:
    def test_on_line_steers_straight(self):
        vehicle = VehicleConfig(use_stanley=True)
        pose = Pose(0.0, 50.0, 0.0, 2.0)
        result = compute_steering(pose, NORTH_LINE, 0, GuidanceFilterState(), vehicle)
        assert result.steer_angle == pytest.approx(0.0, abs=1e-9)

    def test_right_of_line_steers_left(self):
        vehicle = VehicleConfig(use_stanley=True)
        pose = Pose(1.0, 50.0, 0.0, 2.0)
        result = compute_steering(pose, NORTH_LINE, 0, GuidanceFilterState(), vehicle)
        assert result.steer_angle < 0
        assert abs(result.steer_angle) <= vehicle.max_steer_angle


class TestFollowTurnPath:
    def test_empty_path_is_complete(self):
        result = follow_turn_path(Pose(0, 0, 0), [], VehicleConfig(), 4.0)
        assert result.is_turn_complete

    def test_on_path_keeps_following(self):
        path = straight_path((0.0, 0.0), 20.0)
        result = follow_turn_path(Pose(0.0, 1.0, 0.0), path, VehicleConfig(), 4.0)
        assert not result.is_turn_complete
        assert result.steer_angle == pytest.approx(0.0, abs=1e-9)
        assert result.goal_point == pytest.approx((0.0, 5.0))

    def test_off_track_ends_turn(self):
        path = straight_path((0.0, 0.0), 20.0)
        result = follow_turn_path(Pose(5.0, 10.0, 0.0), path, VehicleConfig(), 4.0)
        assert result.is_turn_complete

    def test_end_of_path_ends_turn(self):
        path = straight_path((0.0, 0.0), 20.0)
        result = follow_turn_path(Pose(0.0, 19.9, 0.0), path, VehicleConfig(), 4.0)
        assert result.is_turn_complete

    def test_uturn_compensation_scales_steering(self):
        path = straight_path((0.0, 0.0), 20.0)
        pose = Pose(0.5, 2.0, 0.0)
        plain = follow_turn_path(pose, path, VehicleConfig(), 4.0)
        boosted = follow_turn_path(pose, path, VehicleConfig(uturn_compensation=1.5), 4.0)
        assert boosted.steer_angle == pytest.approx(plain.steer_angle * 1.5)
