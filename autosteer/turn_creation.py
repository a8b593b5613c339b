import logging
from dataclasses import dataclass, field
from enum import Enum
from math import inf, pi
from typing import Callable

import dubins

from autosteer.geometry import (
    calculate_point_headings,
    closest_point_on_line,
    dedupe_points,
    edges,
    offset_point,
    point_in_polygon,
    ray_segment_intersection,
)

logger = logging.getLogger(__name__)

"""
Turn Creation Config
"""


# point spacing (m) the dubins arc is sampled at, and the spacing of the straight legs either side of it
path_generation_precision_m = 0.5

# step (m) the arc start is pushed out into the headland by while searching for the deepest arc that still fits
arc_start_search_step_m = 0.5

# fewer points than this and the service reports failure
min_service_path_points = 10


class PointZone(Enum):
    # outside the tool-width tangent ring, the implement would leave the field
    OUTSIDE_FIELD = 0

    # inside the headland-width ring, the worked part of the field
    IN_FIELD = 1

    # between the two, where turning happens
    IN_TURN_ZONE = 2


@dataclass
class TurnCreationRequest:
    pivot: tuple
    # heading of travel along the current line (AB heading, flipped when driving B -> A)
    travel_heading: float
    is_turn_left: bool
    # a point on the current parallel line
    reference_point: tuple
    # perpendicular distance (m) between the current line and the one the turn ends on
    turn_offset: float
    turn_radius: float
    # boundary offset in by one tool width, the outermost the turn can reach
    tangent_ring: list
    # boundary offset in by the full headland width, the edge of the worked field
    headland_ring: list
    classify_point: Callable
    leg_length: float = 20.0


@dataclass
class TurnCreationResult:
    success: bool
    path: list = field(default_factory=list)
    failure_reason: str = None


# classify arbitrary points against the two turn rings
def make_point_classifier(tangent_ring, headland_ring):
    def classify_point(point):
        if not point_in_polygon(tangent_ring, point):
            return PointZone.OUTSIDE_FIELD
        if point_in_polygon(headland_ring, point):
            return PointZone.IN_FIELD
        return PointZone.IN_TURN_ZONE

    return classify_point


# nearest forward crossing of a ray with a closed ring, inf if it never crosses
def ray_cast(origin, heading, ring):
    nearest = inf
    for _, a, b in edges(ring, closed=True):
        t = ray_segment_intersection(origin, heading, a, b)
        if t is not None and t < nearest:
            nearest = t
    return nearest


def straight_leg(start, heading, length, include_start=True):
    count = int(length / path_generation_precision_m)
    first = 0 if include_start else 1
    return [
        offset_point(start, heading, i * path_generation_precision_m)
        for i in range(first, count + 1)
    ]


# dubins works in math angles (anticlockwise from east), headings are clockwise from north
def to_dubins_angle(heading):
    return pi / 2 - heading


def get_dubins_path(p1, heading1, p2, heading2, radius):
    path = dubins.shortest_path(
        (
            *p1,
            to_dubins_angle(heading1),
        ),
        (
            *p2,
            to_dubins_angle(heading2),
        ),
        radius,
    )
    path_coords, _ = path.sample_many(path_generation_precision_m)
    # samples don't include the destination point, so append it
    return [(c[0], c[1]) for c in path_coords] + [tuple(p2)]


class DubinsTurnCreationService:
    """Default turn creation delegate.

    Joins the current line to the next one with a dubins shortest path placed
    as deep into the headland as the tool-width tangent ring allows, then adds
    straight legs back into the field on both sides.
    """

    def create_turn(self, request):
        travel = request.travel_heading
        exit_heading = travel + pi
        perp = travel - pi / 2 if request.is_turn_left else travel + pi / 2

        # project the pivot onto the current line and find where that line crosses into the headland
        on_line = closest_point_on_line(
            request.pivot,
            request.reference_point,
            offset_point(request.reference_point, travel, 1.0),
        )
        to_headland = ray_cast(on_line, travel, request.headland_ring)
        if to_headland == inf:
            return TurnCreationResult(
                False, failure_reason="Current line does not reach the headland."
            )
        crossing = offset_point(on_line, travel, to_headland)
        next_crossing = offset_point(crossing, perp, request.turn_offset)

        # the arc start can at most be pushed out to where the line meets the tangent ring
        to_tangent = ray_cast(crossing, travel, request.tangent_ring)
        if to_tangent == inf:
            to_tangent = 0.0

        arc = None
        depth = 0.0
        while depth <= to_tangent:
            arc_start = offset_point(crossing, travel, depth)
            arc_end = offset_point(next_crossing, travel, depth)
            candidate = get_dubins_path(
                arc_start, travel, arc_end, exit_heading, request.turn_radius
            )
            if any(
                request.classify_point(p) is PointZone.OUTSIDE_FIELD
                for p in candidate
            ):
                break
            arc = candidate
            depth += arc_start_search_step_m

        if arc is None:
            return TurnCreationResult(
                False,
                failure_reason=f"A {request.turn_radius:.1f}m radius turn does not fit in the headland.",
            )
        depth = max(0.0, depth - arc_start_search_step_m)

        # the entry leg starts no further back than the pivot's own spot on the line
        entry_leg = min(request.leg_length, to_headland)
        entry_start = offset_point(crossing, exit_heading, entry_leg)
        entry = straight_leg(entry_start, travel, entry_leg + depth)
        exit_leg = straight_leg(
            arc[-1], exit_heading, request.leg_length + depth, include_start=False
        )
        # the entry leg ends on the arc start, drop the repeat
        coords = dedupe_points(entry + arc + exit_leg)

        if any(
            request.classify_point(p) is PointZone.OUTSIDE_FIELD for p in coords
        ):
            return TurnCreationResult(
                False, failure_reason="Turn legs leave the field."
            )
        if len(coords) < min_service_path_points:
            return TurnCreationResult(
                False, failure_reason=f"Turn path has only {len(coords)} points."
            )

        logger.debug(
            "Dubins turn %.1fm into the headland, %d points", depth, len(coords)
        )
        return TurnCreationResult(True, calculate_point_headings(coords, False))
