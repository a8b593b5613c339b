import logging
from dataclasses import dataclass, field
from math import atan2, inf, pi

from autosteer.errors import AlgorithmError, ErrorType, GenerationError
from autosteer.geometry import (
    distance,
    edges,
    normalise_angle,
    offset_point,
    point_in_polygon,
    positive_heading,
    ray_segment_intersection,
)
from autosteer.guidance import (
    current_guidance_line,
    follow_turn_path,
    is_heading_same_way,
)
from autosteer.headlands import inward_offset, ring_coords
from autosteer.models import HeadlandMode, TractorZone, TurnPhase, TurnState
from autosteer.turn_creation import TurnCreationRequest, make_point_classifier

logger = logging.getLogger(__name__)

"""
YouTurn Config
-
Defaults for the YouTurnConfig fields, any of which can be overridden per field through the settings payload.
"""


# a created turn is triggered once the pivot is within this distance (m) of the first path point
# the position based completion check also uses it as the distance to the last path point
turn_trigger_radius_m = 2.0

# the position based completion check needs the pivot at least this far (m) from the first path point
turn_min_travel_m = 5.0

# a turn path is only created while the headland ahead is further away than this (m)
# closer than this and there is no room left for the entry leg
min_distance_to_create_m = 30.0

# the heading must be within this many degrees of the AB line (either direction) for the headland ahead to be measured
alignment_tolerance_deg = 20

# spacing (m) between points on the fallback turn path
path_point_spacing_m = 0.5

# the fallback turn never uses a radius smaller than this (m)
min_turn_radius_m = 4.0

# ticks that must pass after a turn path is created before another can be created
min_ticks_between_turns = 4

# the fallback semicircle is never approximated with fewer segments than this
min_arc_segments = 20

# a turn path with fewer points than this is unusable
min_turn_path_points = 10

# value the tick counter is set to when a turn completes, high enough that the next turn can be created straight away
completed_turn_ticks = 10

# a delegate path that turns through more than this in total (radians) is treated as a spiral and replaced by the fallback
max_turn_heading_change_rad = 1.5 * pi

# total headland width (m) used for the fallback legs when neither the settings nor the headland provide one
default_headland_width_m = 20.0


@dataclass(frozen=True)
class YouTurnConfig:
    # number of parallel lines skipped per turn, the turn moves row_skip_rows + 1 lines over
    row_skip_rows: int = 0
    # width used to place the turn boundary and the turn reference point, defaults to the vehicle track width
    tool_width: float = None
    # total headland width, defaults to the move distance of the active headland
    headland_width: float = None
    # configured turn radius, 0 uses the smallest radius that reaches the next line
    turn_radius: float = 0.0
    # length (m) of the straight legs reaching back into the worked field
    extension_length: float = 20.0
    # how far (m) inside the boundary the turn apex is kept
    distance_from_boundary: float = 2.0
    # number of 3 point moving average passes run over a created path
    smoothing_passes: int = 0
    turn_trigger_radius_m: float = turn_trigger_radius_m
    turn_min_travel_m: float = turn_min_travel_m
    min_distance_to_create_m: float = min_distance_to_create_m
    alignment_tolerance_deg: float = alignment_tolerance_deg
    path_point_spacing_m: float = path_point_spacing_m
    min_turn_radius_m: float = min_turn_radius_m
    min_ticks_between_turns: int = min_ticks_between_turns
    min_arc_segments: int = min_arc_segments
    min_turn_path_points: int = min_turn_path_points
    completed_turn_ticks: int = completed_turn_ticks
    max_turn_heading_change_rad: float = max_turn_heading_change_rad

    @property
    def row_skip_width(self):
        return self.row_skip_rows + 1

    @classmethod
    def from_settings(cls, settings):
        keys = {
            "row_skip_rows": "rowSkipRows",
            "tool_width": "toolWidth",
            "headland_width": "headlandWidth",
            "turn_radius": "uTurnRadius",
            "extension_length": "uTurnExtension",
            "distance_from_boundary": "uTurnDistanceFromBoundary",
            "smoothing_passes": "uTurnSmoothing",
            "turn_trigger_radius_m": "turnTriggerRadius",
            "turn_min_travel_m": "turnMinTravel",
            "min_distance_to_create_m": "minDistanceToCreate",
            "alignment_tolerance_deg": "alignmentToleranceDeg",
            "path_point_spacing_m": "pathPointSpacing",
            "min_turn_radius_m": "minTurnRadius",
            "min_ticks_between_turns": "minTicksBetweenTurns",
            "min_arc_segments": "minArcSegments",
            "min_turn_path_points": "minTurnPathPoints",
            "completed_turn_ticks": "completedTurnTicks",
            "max_turn_heading_change_rad": "maxTurnHeadingChange",
        }
        values = dict()
        for name, key in keys.items():
            if key in settings:
                values[name] = settings[key]

        if values.get("row_skip_rows", 0) < 0:
            raise GenerationError(
                ErrorType.BAD_INPUT_DATA, "rowSkipRows cannot be negative."
            )
        return cls(**values)


@dataclass
class YouTurnOutput:
    phase: TurnPhase = TurnPhase.IDLE
    paths_away: int = 0
    # set while a turn is being driven, None means track guidance should steer
    steer_angle: float = None
    cross_track_error: float = None
    turn_path: list = field(default_factory=list)
    next_line: object = None
    status: str = None
    distance_to_headland: float = inf
    zone: TractorZone = None
    completed: bool = False
    # "guidance" or "position", whichever detector ended the turn
    completion_source: str = None
    # "service" or "fallback"
    path_source: str = None
    # the active line changed, the guidance filter must start over
    reset_guidance: bool = False

    @property
    def guidance_applied(self):
        return self.steer_angle is not None


"""
Offset Direction
"""


# change to paths_away when a turn completes
# positive when exactly one of turning left / heading the same way as AB holds, otherwise negative
def paths_offset_change(is_turn_left, is_heading_same_way, row_skip_rows=0):
    rows_to_move = row_skip_rows + 1
    positive_offset = is_turn_left ^ is_heading_same_way
    return rows_to_move if positive_offset else -rows_to_move


def next_line_preview(reference_line, next_paths_away, track_width):
    return current_guidance_line(reference_line, next_paths_away, track_width)


def next_line_inside_boundary(reference_line, next_paths_away, track_width, boundary):
    if boundary is None:
        # nothing to check against
        return True
    midpoint = next_line_preview(reference_line, next_paths_away, track_width).midpoint
    return point_in_polygon(boundary.points, midpoint)


"""
Headland Detection
"""


def travel_heading(ab_heading, same_way):
    return positive_heading(ab_heading if same_way else ab_heading + pi)


def is_aligned(heading, ab_heading, tolerance_deg=alignment_tolerance_deg):
    tolerance = tolerance_deg * pi / 180
    diff = abs(normalise_angle(heading - ab_heading))
    return diff < tolerance or diff > pi - tolerance


# distance along the travel heading to the nearest crossing of the headland line
# a closed headland wraps back to its first point, a clipped one does not
def distance_to_headland(position, heading, headland):
    if headland is None:
        return inf
    coords = ring_coords(headland)
    if len(coords) < (3 if headland.is_closed else 2):
        return inf

    nearest = inf
    for _, a, b in edges(coords, headland.is_closed):
        t = ray_segment_intersection(position, heading, a, b)
        if t is not None and t < nearest:
            nearest = t
    return nearest


# a clipped headland is closed implicitly across the clip line, so the cultivated side stays inside it
def determine_zone(point, headland, boundary):
    if headland is not None and len(headland) >= 3:
        if point_in_polygon(headland.coords, point):
            return TractorZone.IN_CULTIVATED_AREA
    if boundary is not None and point_in_polygon(boundary.points, point):
        return TractorZone.IN_HEADLAND
    return TractorZone.OUTSIDE_BOUNDARY


"""
Path Synthesis
"""


def resolve_tool_width(config, vehicle):
    return config.tool_width if config.tool_width is not None else vehicle.track_width


def resolve_headland_width(config, headland):
    if config.headland_width is not None:
        return config.headland_width
    if headland is not None and headland.move_distance > 0:
        return headland.move_distance
    return default_headland_width_m


# the configured radius grown to at least half the turn offset, and never below the minimum
def fallback_turn_radius(turn_offset, config):
    return max(config.turn_radius, turn_offset / 2, config.min_turn_radius_m)


def arc_point_count(radius, config):
    return max(int(pi * radius / config.path_point_spacing_m), config.min_arc_segments)


# sum of absolute heading changes between consecutive points, about pi for a clean U-turn
def total_heading_change(path):
    total = 0.0
    for i in range(1, len(path)):
        total += abs(normalise_angle(path[i][2] - path[i - 1][2]))
    return total


def smooth_path(path, passes):
    path = list(path)
    if passes <= 0 or len(path) <= 4:
        return path
    for _ in range(passes):
        for i in range(2, len(path) - 2):
            prev = path[i - 1]
            curr = path[i]
            next = path[i + 1]
            path[i] = (
                (prev[0] + curr[0] + next[0]) / 3,
                (prev[1] + curr[1] + next[1]) / 3,
                curr[2],
            )
    return path


# entry leg, semicircle, connector and exit leg built directly from the pose and headland distance
# returns an empty list when the end of the exit leg would be outside the boundary
def build_fallback_turn_path(
    pose,
    ab_heading,
    same_way,
    is_turn_left,
    headland_distance,
    turn_offset,
    headland_width,
    boundary,
    config,
):
    spacing = config.path_point_spacing_m
    radius = fallback_turn_radius(turn_offset, config)

    travel = travel_heading(ab_heading, same_way)
    exit_heading = positive_heading(travel + pi)
    perp = travel - pi / 2 if is_turn_left else travel + pi / 2

    crossing = offset_point(pose.position, travel, headland_distance)

    headland_leg = max(0.0, headland_width - radius - config.distance_from_boundary)
    field_leg = config.extension_length
    # the entry leg never starts behind the vehicle
    entry_leg = min(field_leg, max(0.0, headland_distance))

    entry_start = offset_point(crossing, travel, -entry_leg)
    arc_start = offset_point(crossing, travel, headland_leg)
    arc_centre = offset_point(arc_start, perp, radius)

    exit_end = offset_point(offset_point(crossing, travel, -field_leg), perp, turn_offset)
    if boundary is not None and not point_in_polygon(boundary.points, exit_end):
        logger.info("Fallback turn would end outside the boundary, not creating it")
        return []

    path = list()

    entry_points = int((entry_leg + headland_leg) / spacing)
    exit_points = int((field_leg + headland_leg) / spacing)
    for i in range(entry_points + 1):
        point = offset_point(entry_start, travel, i * spacing)
        path.append((point[0], point[1], travel))

    arc_points = arc_point_count(radius, config)
    start_angle = atan2(arc_start[0] - arc_centre[0], arc_start[1] - arc_centre[1])
    for i in range(1, arc_points + 1):
        t = i / arc_points
        sweep = -pi * t if is_turn_left else pi * t
        angle = start_angle + sweep
        point = offset_point(arc_centre, angle, radius)
        tangent = angle - pi / 2 if is_turn_left else angle + pi / 2
        path.append((point[0], point[1], positive_heading(tangent)))

    # the semicircle spans 2 * radius, which can be wider than the offset to the next line
    arc_end = path[-1]
    exit_start = offset_point(arc_start, perp, turn_offset)
    gap = distance(arc_end, exit_start)
    if gap > spacing:
        connect_points = int(gap / spacing)
        for i in range(1, connect_points + 1):
            t = i / (connect_points + 1)
            path.append(
                (
                    arc_end[0] + (exit_start[0] - arc_end[0]) * t,
                    arc_end[1] + (exit_start[1] - arc_end[1]) * t,
                    exit_heading,
                )
            )

    for i in range(1, exit_points + 1):
        point = offset_point(exit_start, exit_heading, i * spacing)
        path.append((point[0], point[1], exit_heading))

    return smooth_path(path, config.smoothing_passes)


# the point on the current parallel line the delegate builds from: A shifted across by paths_away tool widths
def turn_reference_point(reference_line, paths_away, tool_width):
    return offset_point(
        reference_line.point_a, reference_line.heading + pi / 2, paths_away * tool_width
    )


def build_turn_request(
    pose,
    reference_line,
    paths_away,
    same_way,
    is_turn_left,
    turn_offset,
    boundary,
    tool_width,
    headland_width,
    config,
):
    tangent_ring, _ = inward_offset(boundary, tool_width, HeadlandMode.CURVE)
    headland_ring, _ = inward_offset(boundary, headland_width, HeadlandMode.CURVE)
    return TurnCreationRequest(
        pivot=pose.position,
        travel_heading=travel_heading(reference_line.heading, same_way),
        is_turn_left=is_turn_left,
        reference_point=turn_reference_point(reference_line, paths_away, tool_width),
        turn_offset=turn_offset,
        turn_radius=fallback_turn_radius(turn_offset, config),
        tangent_ring=tangent_ring,
        headland_ring=headland_ring,
        classify_point=make_point_classifier(tangent_ring, headland_ring),
        leg_length=config.extension_length,
    )


def service_turn_path(turn_service, request, config):
    try:
        result = turn_service.create_turn(request)
    except (GenerationError, AlgorithmError) as e:
        logger.warning("Turn creation service failed: %s", e)
        return None
    except Exception:
        # the delegate is external, whatever it raises degrades to the fallback
        logger.exception("Turn creation service raised unexpectedly")
        return None

    if result is None or not result.success:
        reason = result.failure_reason if result is not None else "no result"
        logger.warning("Turn creation service failed: %s", reason)
        return None
    path = [tuple(p) for p in result.path]
    if len(path) < config.min_turn_path_points:
        logger.warning("Turn creation service returned only %d points", len(path))
        return None

    change = total_heading_change(path)
    if change > config.max_turn_heading_change_rad:
        logger.warning(
            "Service path turns through %.0f°, treating it as a spiral",
            change * 180 / pi,
        )
        return None

    return smooth_path(path, config.smoothing_passes)


# try the delegate first and fall back to the direct construction
# returns the path and where it came from, or an empty path and None
def create_turn_path(
    pose,
    reference_line,
    paths_away,
    same_way,
    is_turn_left,
    headland_distance,
    headland,
    boundary,
    vehicle,
    config,
    turn_service=None,
):
    tool_width = resolve_tool_width(config, vehicle)
    headland_width = resolve_headland_width(config, headland)
    turn_offset = vehicle.track_width * config.row_skip_width

    if turn_service is not None and boundary is not None:
        try:
            request = build_turn_request(
                pose,
                reference_line,
                paths_away,
                same_way,
                is_turn_left,
                turn_offset,
                boundary,
                tool_width,
                headland_width,
                config,
            )
        except GenerationError as e:
            logger.warning("Could not build turn boundaries: %s", e)
            request = None

        if request is not None:
            path = service_turn_path(turn_service, request, config)
            if path is not None:
                return path, "service"

    path = build_fallback_turn_path(
        pose,
        reference_line.heading,
        same_way,
        is_turn_left,
        headland_distance,
        turn_offset,
        headland_width,
        boundary,
        config,
    )
    if len(path) < config.min_turn_path_points:
        logger.warning("Fallback turn path has only %d points", len(path))
        return [], None
    return path, "fallback"


"""
State Machine
"""


def following_status(paths_away, track_width):
    return f"Following path {paths_away} ({track_width * abs(paths_away):.1f}m offset)"


def complete_turn(state, pose, config, vehicle, output, source):
    paths_away = state.paths_away + paths_offset_change(
        state.is_turn_left, state.was_heading_same_way_at_start, config.row_skip_rows
    )
    logger.info(
        "YouTurn complete (%s), turned %s, now on path %d",
        source,
        "left" if state.is_turn_left else "right",
        paths_away,
    )

    output.completed = True
    output.completion_source = source
    output.reset_guidance = True
    output.steer_angle = None
    output.cross_track_error = None
    output.turn_path = list()
    output.next_line = None
    output.status = following_status(paths_away, vehicle.track_width)

    return TurnState(
        phase=TurnPhase.IDLE,
        paths_away=paths_away,
        next_paths_away=paths_away,
        since_last_turn_ticks=config.completed_turn_ticks,
        last_completion_position=pose.position,
        distance_to_headland=state.distance_to_headland,
        last_turn_was_left=state.is_turn_left,
    )


def position_says_complete(pose, turn_path, config):
    if len(turn_path) < 3:
        return False
    to_start = distance(pose.position, turn_path[0])
    to_end = distance(pose.position, turn_path[-1])
    return (
        to_end <= config.turn_trigger_radius_m
        and to_end < to_start
        and to_start > config.turn_min_travel_m
    )


# steer along the turn path, finishing the turn when either completion check fires
def drive_turn(state, pose, vehicle, config, output):
    follow = follow_turn_path(pose, state.turn_path, vehicle, vehicle.look_ahead_hold)

    if follow.is_turn_complete:
        return complete_turn(state, pose, config, vehicle, output, "guidance")
    if position_says_complete(pose, state.turn_path, config):
        return complete_turn(state, pose, config, vehicle, output, "position")

    output.steer_angle = follow.steer_angle
    output.cross_track_error = follow.cross_track_error
    return state


def step_youturn(
    state,
    pose,
    reference_line,
    headland,
    boundary,
    vehicle,
    config,
    turn_service=None,
):
    output = YouTurnOutput(phase=state.phase, paths_away=state.paths_away)
    if reference_line is None or reference_line.is_degenerate:
        return state, output

    ab_heading = reference_line.heading
    same_way = is_heading_same_way(pose.heading, ab_heading)
    travel = travel_heading(ab_heading, same_way)
    aligned = is_aligned(pose.heading, ab_heading, config.alignment_tolerance_deg)

    # only look for the headland when lined up with the track, mid-turn headings would give false distances
    to_headland = distance_to_headland(pose.position, travel, headland) if aligned else inf
    zone = determine_zone(pose.position, headland, boundary)

    state = state.evolve(
        since_last_turn_ticks=state.since_last_turn_ticks + 1,
        distance_to_headland=to_headland,
    )
    output.distance_to_headland = to_headland
    output.zone = zone

    if state.phase is TurnPhase.IDLE:
        state = _try_create(
            state,
            pose,
            reference_line,
            headland,
            boundary,
            vehicle,
            config,
            turn_service,
            same_way,
            aligned,
            output,
        )

    elif state.phase is TurnPhase.APPROACHING:
        to_start = distance(pose.position, state.turn_path[0])
        if to_start <= config.turn_trigger_radius_m:
            next_paths_away = state.paths_away + paths_offset_change(
                state.is_turn_left, same_way, config.row_skip_rows
            )
            state = state.evolve(
                phase=TurnPhase.TRIGGERED, next_paths_away=next_paths_away
            )
            output.status = "YouTurn triggered"
            logger.info("YouTurn triggered %.2fm from the turn start", to_start)
        elif zone is TractorZone.IN_HEADLAND:
            # drove past the turn start without triggering
            state = state.evolve(
                phase=TurnPhase.IDLE,
                turn_path=(),
                next_paths_away=state.paths_away,
            )
            output.status = "YouTurn missed, path reset"
            logger.info("Entered the headland without triggering, turn path reset")

    if state.phase is TurnPhase.TRIGGERED:
        state = drive_turn(state, pose, vehicle, config, output)

    output.phase = state.phase
    output.paths_away = state.paths_away
    if state.phase is not TurnPhase.IDLE:
        output.turn_path = list(state.turn_path)
        output.next_line = next_line_preview(
            reference_line, state.next_paths_away, vehicle.track_width
        )
    return state, output


def _try_create(
    state,
    pose,
    reference_line,
    headland,
    boundary,
    vehicle,
    config,
    turn_service,
    same_way,
    aligned,
    output,
):
    if headland is None:
        return state
    if state.since_last_turn_ticks < config.min_ticks_between_turns or not aligned:
        return state
    to_headland = state.distance_to_headland
    if not config.min_distance_to_create_m < to_headland < inf:
        return state

    # turning left when heading the same way as AB, right when heading the other way, zig-zags across the field
    is_turn_left = same_way
    next_paths_away = state.paths_away + paths_offset_change(
        is_turn_left, same_way, config.row_skip_rows
    )

    if not next_line_inside_boundary(
        reference_line, next_paths_away, vehicle.track_width, boundary
    ):
        output.status = "End of field reached"
        logger.info("Next line %d is outside the boundary", next_paths_away)
        return state

    path, source = create_turn_path(
        pose,
        reference_line,
        state.paths_away,
        same_way,
        is_turn_left,
        to_headland,
        headland,
        boundary,
        vehicle,
        config,
        turn_service,
    )
    if len(path) == 0:
        # try again on a later tick
        return state

    output.path_source = source
    output.status = f"YouTurn path created ({len(path)} points)"
    logger.info(
        "YouTurn path created from %s, %d points, %.1fm from the headland",
        source,
        len(path),
        to_headland,
    )
    return state.evolve(
        phase=TurnPhase.APPROACHING,
        turn_path=tuple(path),
        is_turn_left=is_turn_left,
        was_heading_same_way_at_start=same_way,
        next_paths_away=next_paths_away,
        since_last_turn_ticks=0,
    )


# operator forced turn in a chosen direction, created and triggered on the spot
def trigger_manual_turn(
    state,
    pose,
    reference_line,
    headland,
    boundary,
    vehicle,
    config,
    turn_left,
    turn_service=None,
):
    output = YouTurnOutput(phase=state.phase, paths_away=state.paths_away)
    if reference_line is None or reference_line.is_degenerate:
        output.status = "Invalid track"
        return state, output
    if state.phase is not TurnPhase.IDLE:
        output.status = "U-turn already in progress"
        return state, output

    ab_heading = reference_line.heading
    same_way = is_heading_same_way(pose.heading, ab_heading)
    to_headland = distance_to_headland(
        pose.position, travel_heading(ab_heading, same_way), headland
    )
    if to_headland == inf:
        # no headland ahead, turn from where the vehicle is
        to_headland = 0.0

    path, source = create_turn_path(
        pose,
        reference_line,
        state.paths_away,
        same_way,
        turn_left,
        to_headland,
        headland,
        boundary,
        vehicle,
        config,
        turn_service,
    )
    if len(path) == 0:
        output.status = "Failed to create U-turn path"
        return state, output

    next_paths_away = state.paths_away + paths_offset_change(
        turn_left, same_way, config.row_skip_rows
    )
    state = state.evolve(
        phase=TurnPhase.TRIGGERED,
        turn_path=tuple(path),
        is_turn_left=turn_left,
        was_heading_same_way_at_start=same_way,
        next_paths_away=next_paths_away,
        since_last_turn_ticks=0,
    )
    output.phase = state.phase
    output.path_source = source
    output.turn_path = list(path)
    output.next_line = next_line_preview(
        reference_line, next_paths_away, vehicle.track_width
    )
    output.status = f"Manual {'left' if turn_left else 'right'} U-turn started"
    logger.info(output.status)
    return state, output
