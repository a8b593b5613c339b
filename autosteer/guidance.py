import logging
from dataclasses import dataclass
from math import atan, atan2, cos, degrees, inf, pi, sin

from autosteer.geometry import (
    closest_point_on_line,
    distance,
    normalise_angle,
    offset_point,
    signed_distance_to_line,
)
from autosteer.models import GuidanceFilterState

logger = logging.getLogger(__name__)

"""
Guidance Config
"""


# look-ahead stays at the hold distance until the vehicle is moving faster than this (km/h)
look_ahead_speed_threshold_kph = 1.0

# scales speed (km/h) * look-ahead multiplier into metres of extra look-ahead
look_ahead_speed_factor = 0.1

# pure pursuit radius is clamped to this magnitude (m), only used for display
max_pure_pursuit_radius_m = 500

# weight of the newest cross track error in the low-pass filtered error, the remainder is kept from the previous tick
error_filter_weight = 0.2

# the derivative of the filtered error is sampled every this many ticks
derivative_sample_ticks = 4

# integral only accumulates above this speed (km/h), when the error is steady and no U-turn is being driven
integral_min_speed_kph = 2.5
integral_max_derivative = 0.1

# cross track errors smaller than this (m) leave the integral untouched
integral_deadband_m = 0.02

# pure pursuit integral gains and limits
pure_pursuit_integral_rate = -0.02
pure_pursuit_integral_same_side_rate = -0.04
pure_pursuit_integral_limit = 0.2
pure_pursuit_integral_decay = 0.95

# stanley integral gains and limits
stanley_integral_rate = -0.02
stanley_integral_same_side_rate = -0.06
stanley_integral_limit = 2.0
stanley_integral_decay = 0.97

# stanley divides by speed, so clamp speed to at least this (m/s)
stanley_min_speed_ms = 0.1

# while following a turn path, the turn is over once the pivot is this far from the nearest path point (m)
turn_path_off_track_m = 2.0


@dataclass
class SteeringResult:
    steer_angle: float
    cross_track_error: float
    filter_state: GuidanceFilterState
    guidance_line: object
    goal_point: tuple
    steer_point: tuple
    look_ahead: float
    is_heading_same_way: bool
    pure_pursuit_radius: float = 0.0
    heading_error: float = 0.0


@dataclass
class TurnGuidanceResult:
    steer_angle: float = 0.0
    cross_track_error: float = 0.0
    is_turn_complete: bool = False
    goal_point: tuple = None
    nearest_index: int = 0
    remaining_points: int = 0


"""
Line Functions
"""


# the guidance line actually followed: the reference line shifted track_width * paths_away along the AB perpendicular
def current_guidance_line(reference_line, paths_away, track_width):
    return reference_line.offset(track_width * paths_away, name=f"Path {paths_away}")


def look_ahead_distance(speed_kph, vehicle):
    if speed_kph <= look_ahead_speed_threshold_kph:
        return vehicle.look_ahead_hold
    return max(
        vehicle.min_look_ahead,
        vehicle.look_ahead_hold
        + speed_kph * vehicle.look_ahead_mult * look_ahead_speed_factor,
    )


def steer_axle_point(pose, wheelbase):
    return offset_point(pose.position, pose.heading, wheelbase)


def is_heading_same_way(heading, ab_heading):
    return abs(normalise_angle(heading - ab_heading)) < pi / 2


# heading error folded into [-pi/2, pi/2], direction along the line doesn't matter
def fold_heading_error(error):
    if error > pi:
        error -= pi
    elif error < -pi:
        error += pi

    if error > pi / 2:
        error -= pi
    elif error < -pi / 2:
        error += pi
    return error


def clamp(value, low, high):
    return max(low, min(high, value))


"""
Integral Filter
"""


# advance the filter state by one tick given the raw pivot distance from the line
# the low-pass error and derivative sampling are shared by both controllers, only the rates and limits differ
def update_integral(
    prev,
    distance_from_line,
    speed_kph,
    gain,
    allow_accumulate=True,
    rate=pure_pursuit_integral_rate,
    same_side_rate=pure_pursuit_integral_same_side_rate,
    limit=pure_pursuit_integral_limit,
    decay=pure_pursuit_integral_decay,
    derivative_scale=2.0,
):
    if prev is None:
        prev = GuidanceFilterState()

    if gain == 0:
        return GuidanceFilterState(
            integral=0.0,
            previous_error=0.0,
            previous_error_last=prev.previous_error_last,
            counter=prev.counter,
        )

    error = distance_from_line * error_filter_weight + prev.previous_error * (
        1 - error_filter_weight
    )
    counter = prev.counter + 1

    if counter > derivative_sample_ticks:
        derivative = (error - prev.previous_error_last) * derivative_scale
        error_last = error
        counter = 0
    else:
        derivative = 0.0
        error_last = prev.previous_error_last

    if (
        allow_accumulate
        and speed_kph > integral_min_speed_kph
        and abs(derivative) < integral_max_derivative
    ):
        if (prev.integral < 0 and distance_from_line < 0) or (
            prev.integral > 0 and distance_from_line > 0
        ):
            # crossing the line the wrong way, bleed the integral off faster
            integral = prev.integral + error * gain * same_side_rate
        elif abs(distance_from_line) > integral_deadband_m:
            integral = prev.integral + error * gain * rate
            integral = clamp(integral, -limit, limit)
        else:
            integral = prev.integral
    else:
        integral = prev.integral * decay

    return GuidanceFilterState(
        integral=integral,
        previous_error=error,
        previous_error_last=error_last,
        counter=counter,
    )


"""
Track Guidance
"""


def compute_steering(
    pose, reference_line, paths_away, filter_state, vehicle, is_turn_triggered=False
):
    if reference_line is None or reference_line.is_degenerate:
        logger.debug("No usable reference line, skipping guidance")
        return None

    ab_heading = reference_line.heading
    same_way = is_heading_same_way(pose.heading, ab_heading)

    guidance_line = current_guidance_line(
        reference_line, paths_away, vehicle.track_width
    )
    look_ahead = look_ahead_distance(pose.speed_kph, vehicle)
    steer_point = steer_axle_point(pose, vehicle.wheelbase)

    a = guidance_line.point_a
    b = guidance_line.point_b
    distance_from_line = signed_distance_to_line(pose.position, a, b)
    closest_pivot = closest_point_on_line(pose.position, a, b)

    if vehicle.use_stanley:
        result = _stanley(
            pose,
            guidance_line,
            filter_state,
            vehicle,
            same_way,
            distance_from_line,
            closest_pivot,
            steer_point,
        )
    else:
        result = _pure_pursuit(
            pose,
            guidance_line,
            filter_state,
            vehicle,
            same_way,
            distance_from_line,
            closest_pivot,
            look_ahead,
            is_turn_triggered,
        )

    result.guidance_line = guidance_line
    result.steer_point = steer_point
    result.look_ahead = look_ahead
    return result


def _pure_pursuit(
    pose,
    guidance_line,
    filter_state,
    vehicle,
    same_way,
    distance_from_line,
    closest_pivot,
    look_ahead,
    is_turn_triggered,
):
    state = update_integral(
        filter_state,
        distance_from_line,
        pose.speed_kph,
        vehicle.integral_gain,
        allow_accumulate=not is_turn_triggered,
    )

    # goal point lies look_ahead along the line from the pivot's projection, in the direction of travel
    line_heading = guidance_line.heading
    if not same_way:
        line_heading += pi
    goal = offset_point(closest_pivot, line_heading, look_ahead)

    goal_dist_sq = (goal[0] - pose.easting) ** 2 + (goal[1] - pose.northing) ** 2

    if same_way:
        local_heading = 2 * pi - pose.heading + state.integral
    else:
        local_heading = 2 * pi - pose.heading - state.integral

    lateral = (goal[0] - pose.easting) * cos(local_heading) + (
        goal[1] - pose.northing
    ) * sin(local_heading)

    if goal_dist_sq == 0:
        steer_angle = 0.0
    else:
        steer_angle = degrees(atan(2 * lateral * vehicle.wheelbase / goal_dist_sq))
    steer_angle = clamp(steer_angle, -vehicle.max_steer_angle, vehicle.max_steer_angle)

    radius = goal_dist_sq / (2 * lateral) if lateral != 0 else inf
    radius = clamp(radius, -max_pure_pursuit_radius_m, max_pure_pursuit_radius_m)

    cross_track_error = distance_from_line if same_way else -distance_from_line
    heading_error = fold_heading_error(pose.heading - guidance_line.heading)

    return SteeringResult(
        steer_angle=steer_angle,
        cross_track_error=cross_track_error,
        filter_state=state,
        guidance_line=guidance_line,
        goal_point=goal,
        steer_point=None,
        look_ahead=look_ahead,
        is_heading_same_way=same_way,
        pure_pursuit_radius=radius,
        heading_error=degrees(heading_error),
    )


def _stanley(
    pose,
    guidance_line,
    filter_state,
    vehicle,
    same_way,
    distance_from_line,
    closest_pivot,
    steer_point,
):
    # the integral shifts a virtual copy of the line sideways, the steer axle is steered onto that copy
    integral = filter_state.integral if filter_state is not None else 0.0
    steer_line = guidance_line.offset(integral)

    distance_from_steer_line = signed_distance_to_line(
        steer_point, steer_line.point_a, steer_line.point_b
    )
    closest_steer = closest_point_on_line(
        steer_point, steer_line.point_a, steer_line.point_b
    )

    path_heading = atan2(
        closest_steer[0] - closest_pivot[0], closest_steer[1] - closest_pivot[1]
    )
    heading_error = fold_heading_error(pose.heading - path_heading)

    if not same_way:
        distance_from_line = -distance_from_line
        distance_from_steer_line = -distance_from_steer_line

    state = update_integral(
        filter_state,
        distance_from_line,
        pose.speed_kph,
        vehicle.stanley_integral_gain,
        rate=stanley_integral_rate,
        same_side_rate=stanley_integral_same_side_rate,
        limit=stanley_integral_limit,
        decay=stanley_integral_decay,
        derivative_scale=1.0,
    )

    speed_ms = max(pose.speed, stanley_min_speed_ms)
    heading_component = heading_error * vehicle.stanley_heading_gain
    xte_component = atan(
        vehicle.stanley_distance_gain * distance_from_steer_line / speed_ms
    )
    steer_angle = degrees(-(heading_component + xte_component))
    steer_angle = clamp(steer_angle, -vehicle.max_steer_angle, vehicle.max_steer_angle)

    return SteeringResult(
        steer_angle=steer_angle,
        cross_track_error=distance_from_line,
        filter_state=state,
        guidance_line=guidance_line,
        goal_point=closest_steer,
        steer_point=steer_point,
        look_ahead=0.0,
        is_heading_same_way=same_way,
        heading_error=degrees(heading_error),
    )


"""
Turn Path Guidance
"""


# pure pursuit along an explicit polyline, reporting when the turn has been driven
def follow_turn_path(pose, turn_path, vehicle, look_ahead):
    count = len(turn_path)
    if count == 0:
        return TurnGuidanceResult(is_turn_complete=True)

    pivot = pose.position

    # find the 2 closest points to the pivot
    min_dist_a = inf
    min_dist_b = inf
    a = 0
    b = 0
    for i, point in enumerate(turn_path):
        dist = (pivot[0] - point[0]) ** 2 + (pivot[1] - point[1]) ** 2
        if dist < min_dist_a:
            min_dist_b = min_dist_a
            b = a
            min_dist_a = dist
            a = i
        elif dist < min_dist_b:
            min_dist_b = dist
            b = i

    if a > b:
        a, b = b, a

    # the closest 2 points can be on opposite legs when the path start and end are close together, so follow on from a
    if b != a + 1 and a + 1 < count:
        b = a + 1

    distance_pivot = distance(turn_path[a], pivot)
    halfway = count // 2
    if (a > 0 and distance_pivot > turn_path_off_track_m) or (
        b >= count - 1 and a > halfway
    ):
        return TurnGuidanceResult(is_turn_complete=True, nearest_index=a)

    dx = turn_path[b][0] - turn_path[a][0]
    dy = turn_path[b][1] - turn_path[a][1]
    if dx == 0 and dy == 0:
        return TurnGuidanceResult(nearest_index=a, remaining_points=count - b)

    distance_from_line = signed_distance_to_line(pivot, turn_path[a], turn_path[b])
    u = ((pivot[0] - turn_path[a][0]) * dx + (pivot[1] - turn_path[a][1]) * dy) / (
        dx * dx + dy * dy
    )
    start = (turn_path[a][0] + u * dx, turn_path[a][1] + u * dy)

    # walk along the path from the projected point until the look-ahead is used up
    goal = None
    dist_so_far = 0.0
    for i in range(b, count):
        segment = distance(start, turn_path[i])
        if segment + dist_so_far > look_ahead:
            j = (look_ahead - dist_so_far) / segment
            goal = (
                (1 - j) * start[0] + j * turn_path[i][0],
                (1 - j) * start[1] + j * turn_path[i][1],
            )
            break
        dist_so_far += segment
        start = turn_path[i]

    if goal is None:
        # look-ahead is longer than what remains of the turn
        return TurnGuidanceResult(is_turn_complete=True, nearest_index=a)

    goal_dist_sq = (goal[0] - pivot[0]) ** 2 + (goal[1] - pivot[1]) ** 2
    local_heading = 2 * pi - pose.heading
    lateral = (goal[0] - pivot[0]) * cos(local_heading) + (goal[1] - pivot[1]) * sin(
        local_heading
    )
    steer_angle = degrees(atan(2 * lateral * vehicle.wheelbase / goal_dist_sq))
    steer_angle *= vehicle.uturn_compensation
    steer_angle = clamp(steer_angle, -vehicle.max_steer_angle, vehicle.max_steer_angle)

    return TurnGuidanceResult(
        steer_angle=steer_angle,
        cross_track_error=distance_from_line,
        is_turn_complete=False,
        goal_point=goal,
        nearest_index=a,
        remaining_points=count - b,
    )
