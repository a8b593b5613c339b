import logging
from math import ceil, inf, pi

from shapely import MultiPolygon, Polygon
from shapely.geometry.polygon import orient

from autosteer.errors import Error, ErrorType, GenerationError
from autosteer.geometry import (
    dedupe_points,
    distance,
    edges,
    line_segment_intersection,
    path_length,
    project_onto_segment,
)
from autosteer.models import BoundaryAnchor, HeadlandLine, HeadlandMode

logger = logging.getLogger(__name__)

"""
General Headland Config
"""


# spacing (m) between points on the rounded corners produced by offsetting in curve mode
# buffering is configured with a number of segments per circle quadrant, which is derived from this
path_generation_precision_m = 0.5

# a mitred corner is bevelled once the mitre tip would be further than this multiple of the offset distance from the original corner
mitre_limit = 5.0

# an offset ring with fewer vertices than this is treated as degenerate
min_headland_points = 3

# the two anchor points defining a clip line must be further apart than this (m)
min_clip_line_length_m = 0.01


"""
Ring Functions
"""


def ring_coords(ring):
    points = ring.points if hasattr(ring, "points") else ring
    coords = [(p[0], p[1]) for p in points]
    # drop a repeated closing point, rings wrap implicitly
    if len(coords) > 1 and distance(coords[0], coords[-1]) < 1e-9:
        coords = coords[:-1]
    return coords


def is_closed_ring(ring):
    return getattr(ring, "is_closed", True)


def ring_version(ring):
    return getattr(ring, "version", 0)


# buffering functions are configured with the number of segments with which to approximate a circle quadrant
# number of segments = (circumference / 4) / precision = (pi * radius / 2) / precision
def quad_segments(distance):
    return max(1, ceil(abs(distance) * (pi / 2) / path_generation_precision_m))


# offset a ring inward by the given distance, negative distances offset outward
# returns the offset exterior (no repeated closing point), in the same winding order as the input, and any warnings
def inward_offset(coords, distance, mode=HeadlandMode.CURVE):
    errors = list()
    coords = ring_coords(coords)
    if len(coords) < 3:
        raise GenerationError(
            ErrorType.UNUSABLE_INPUT, "Ring needs at least 3 vertices to offset."
        )

    polygon = Polygon(coords)
    if not polygon.is_valid:
        # self-intersecting input, repair by a zero buffer before offsetting
        polygon = polygon.buffer(0)

    buffered = polygon.buffer(
        -distance,
        quad_segs=quad_segments(distance),
        join_style=mode.join_style,
        mitre_limit=mitre_limit,
    )

    if buffered.is_empty:
        raise GenerationError(
            ErrorType.GEOMETRIC_FAILURE,
            f"Offsetting the boundary in by {distance:.2f}m leaves no area.",
        )

    if isinstance(buffered, MultiPolygon):
        # keep the largest sub-polygon, everything else is unreachable at this offset
        geoms = sorted(buffered.geoms, key=lambda geom: geom.area, reverse=True)
        dropped = [list(geom.exterior.coords) for geom in geoms[1:]]
        buffered = geoms[0]
        errors.append(
            Error(
                ErrorType.OFFSET_WARNING,
                f"Offsetting by {distance:.2f}m split the field into {len(geoms)} parts, only the largest is kept.",
                geometry=dropped,
            )
        )
        logger.warning(errors[-1].message)

    if not buffered.is_valid or len(buffered.exterior.coords) - 1 < min_headland_points:
        raise GenerationError(
            ErrorType.GEOMETRIC_FAILURE,
            f"Offsetting the boundary in by {distance:.2f}m produced a degenerate ring.",
        )

    # match the winding of the input ring
    sign = 1.0 if Polygon(coords).exterior.is_ccw else -1.0
    buffered = orient(buffered, sign=sign)

    return list(buffered.exterior.coords)[:-1], errors


def headland_distance(tool_width, passes=1):
    if tool_width <= 0 or passes < 1:
        raise GenerationError(
            ErrorType.BAD_INPUT_DATA,
            f"Headland needs a positive tool width and at least one pass, got {tool_width}m x {passes}.",
        )
    return tool_width * passes


"""
Headland Building
"""


def build_headland(boundary, distance, mode=HeadlandMode.CURVE, version=0):
    if boundary is None:
        raise GenerationError(ErrorType.UNUSABLE_INPUT, "No boundary to build from.")
    if distance <= 0:
        raise GenerationError(
            ErrorType.BAD_INPUT_DATA,
            f"Headland distance must be positive, got {distance}m.",
        )

    coords, errors = inward_offset(boundary, distance, mode)
    headland = HeadlandLine.from_coords(
        coords,
        is_closed=True,
        move_distance=distance,
        mode=mode,
        version=version,
    )
    logger.info(
        "Built %s headland at %.2fm with %d points",
        mode.name.lower(),
        distance,
        len(headland),
    )
    return headland, errors


"""
Anchors and Clipping
"""


# snap a query point to the closest point on any edge of the ring
def nearest_anchor(ring, query):
    coords = ring_coords(ring)
    if len(coords) < 2:
        raise GenerationError(
            ErrorType.UNUSABLE_INPUT, "Ring needs at least 2 points to anchor to."
        )

    best = None
    best_dist = inf
    for i, a, b in edges(coords, is_closed_ring(ring)):
        t, projected, dist = project_onto_segment(query, a, b)
        if dist < best_dist:
            best_dist = dist
            best = BoundaryAnchor(i, t, projected, ring_version(ring))
    return best


# every crossing of the infinite line p1 -> p2 with the ring, as (segment index, u, point) sorted along the ring
def line_crossings(coords, p1, p2, closed=True):
    crossings = list()
    count = len(coords)
    for i, a, b in edges(coords, closed):
        hit = line_segment_intersection(p1, p2, a, b)
        if hit is None:
            continue
        u, point = hit
        # a crossing exactly at a vertex is counted on the segment that starts there
        # except at the very end of an open line, which has no following segment
        if u >= 1 and (closed or i < count - 2):
            continue
        crossings.append((i, u, point))
    crossings.sort(key=lambda crossing: (crossing[0], crossing[1]))
    return crossings


# the two ways round a ring between two cut points, each starting at cut1 and ending at cut2
# cuts are (segment index, u, point) with cut1 before cut2 in ring order
def ring_arcs(coords, cut1, cut2, closed=True):
    count = len(coords)
    i1, _, p1 = cut1
    i2, _, p2 = cut2

    forward = [p1]
    for i in range(i1 + 1, i2 + 1):
        forward.append(coords[i])
    forward.append(p2)

    if not closed:
        return dedupe_points(forward), None

    # walk the vertices backwards from the start of cut1's segment to the end of cut2's
    # both cuts on the same segment means going all the way round
    backward = [p1, coords[i1]]
    i = (i1 - 1) % count
    while i != i2:
        backward.append(coords[i])
        i = (i - 1) % count
    backward.append(p2)

    return dedupe_points(forward), dedupe_points(backward)


def clip_at_line(ring, anchor1, anchor2, mode=None):
    coords = ring_coords(ring)
    closed = is_closed_ring(ring)
    version = ring_version(ring)
    if mode is None:
        mode = getattr(ring, "mode", HeadlandMode.CURVE)

    p1 = anchor1.resolve(coords, version)
    p2 = anchor2.resolve(coords, version)
    if distance(p1, p2) < min_clip_line_length_m:
        raise GenerationError(
            ErrorType.GEOMETRIC_FAILURE,
            "Clip points are too close together to define a line.",
        )

    crossings = line_crossings(coords, p1, p2, closed)
    if len(crossings) < 2:
        raise GenerationError(
            ErrorType.GEOMETRIC_FAILURE,
            f"Clip line crosses the headland {len(crossings)} times, need at least 2.",
            geometry=[p1, p2],
        )
    if len(crossings) > 2:
        logger.warning(
            "Clip line crosses the headland %d times, using the first 2",
            len(crossings),
        )

    forward, backward = ring_arcs(coords, crossings[0], crossings[1], closed)

    if backward is None:
        kept = forward
    else:
        forward_length = path_length(forward)
        backward_length = path_length(backward)
        # curve mode trims the corner off and keeps the long way round, line mode keeps the direct cut
        if mode is HeadlandMode.CURVE:
            kept = forward if forward_length >= backward_length else backward
        else:
            kept = forward if forward_length <= backward_length else backward

    if len(kept) < 2:
        raise GenerationError(
            ErrorType.GEOMETRIC_FAILURE, "Clipped headland has fewer than 2 points."
        )

    logger.info("Clipped headland to %d points (%.1fm)", len(kept), path_length(kept))
    return HeadlandLine.from_coords(
        kept,
        is_closed=False,
        move_distance=getattr(ring, "move_distance", 0.0),
        mode=mode,
        version=version + 1,
    )
