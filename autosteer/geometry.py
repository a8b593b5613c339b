from math import atan2, cos, pi, sin, sqrt
from math import dist as dist_2d

from shapely import LineString, Point, Polygon

"""
General Geometric Config
"""


# below this cross product magnitude a ray and a segment are treated as parallel
parallel_tolerance = 1e-10

# segments with a squared length below this are degenerate, points project onto their start
degenerate_segment_length_sq = 0.0001


"""
Angle Functions
-
Headings are measured in radians clockwise from north, so a heading is atan2(delta easting, delta northing).
"""


# wrap an angle into (-pi, pi]
def normalise_angle(angle):
    while angle > pi:
        angle = angle - 2 * pi
    while angle <= -pi:
        angle = angle + 2 * pi
    return angle


# wrap an angle into [0, 2pi)
def positive_heading(angle):
    angle = angle % (2 * pi)
    if angle >= 2 * pi:
        angle = 0.0
    return angle


def get_heading(p1, p2):
    return atan2(p2[0] - p1[0], p2[1] - p1[1])


def offset_point(point, heading, dist):
    return (point[0] + sin(heading) * dist, point[1] + cos(heading) * dist)


def distance(p1, p2):
    return dist_2d(p1[:2], p2[:2])


"""
Projection Functions
"""


# project a point onto a segment, clamped to the segment ends
# returns the segment parameter t in [0, 1], the projected point, and the distance from the query to it
def project_onto_segment(point, a, b):
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    length_sq = dx * dx + dy * dy

    if length_sq < degenerate_segment_length_sq:
        return 0.0, (a[0], a[1]), distance(point, a)

    t = ((point[0] - a[0]) * dx + (point[1] - a[1]) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    projected = (a[0] + t * dx, a[1] + t * dy)
    return t, projected, distance(point, projected)


# projection onto the infinite line through a and b, not clamped
def closest_point_on_line(point, a, b):
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    u = ((point[0] - a[0]) * dx + (point[1] - a[1]) * dy) / (dx * dx + dy * dy)
    return (a[0] + u * dx, a[1] + u * dy)


# perpendicular distance from the infinite line a -> b, positive when the point is to the right of the line direction
def signed_distance_to_line(point, a, b):
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    return (dy * point[0] - dx * point[1] + b[0] * a[1] - b[1] * a[0]) / sqrt(
        dy * dy + dx * dx
    )


"""
Intersection Functions
"""


# distance along a ray cast from origin at the given heading to segment a-b, or None if the ray misses
def ray_segment_intersection(origin, heading, a, b):
    dir_e = sin(heading)
    dir_n = cos(heading)
    edge_e = b[0] - a[0]
    edge_n = b[1] - a[1]
    to_a_e = a[0] - origin[0]
    to_a_n = a[1] - origin[1]

    cross = dir_e * edge_n - dir_n * edge_e
    if abs(cross) < parallel_tolerance:
        return None

    t = (to_a_e * edge_n - to_a_n * edge_e) / cross
    u = (to_a_e * dir_n - to_a_n * dir_e) / cross

    if t > 0 and 0 <= u <= 1:
        return t
    return None


# intersect the infinite line through p1 and p2 with segment a-b
# returns the parameter u along the segment and the intersection point, or None
def line_segment_intersection(p1, p2, a, b):
    line_e = p2[0] - p1[0]
    line_n = p2[1] - p1[1]
    edge_e = b[0] - a[0]
    edge_n = b[1] - a[1]

    denominator = line_e * edge_n - line_n * edge_e
    if abs(denominator) < parallel_tolerance:
        return None

    u = ((a[0] - p1[0]) * line_n - (a[1] - p1[1]) * line_e) / denominator
    if u < 0 or u > 1:
        return None

    return u, (a[0] + u * edge_e, a[1] + u * edge_n)


# intersect segment p1-p2 with segment a-b, returning the point or None
def segment_intersection(p1, p2, a, b):
    hit = line_segment_intersection(p1, p2, a, b)
    if hit is None:
        return None
    _, point = hit

    line_e = p2[0] - p1[0]
    line_n = p2[1] - p1[1]
    length_sq = line_e * line_e + line_n * line_n
    s = ((point[0] - p1[0]) * line_e + (point[1] - p1[1]) * line_n) / length_sq
    if s < 0 or s > 1:
        return None
    return point


"""
Polygon and Path Functions
"""


# iterate over the edges of a point list as (index, start, end), wrapping to the first point when closed
def edges(points, closed=True):
    count = len(points)
    last = count if closed else count - 1
    for i in range(last):
        yield i, points[i], points[(i + 1) % count]


def point_in_polygon(ring, point):
    if ring is None or len(ring) < 3:
        return False
    return Polygon([p[:2] for p in ring]).contains(Point(point[0], point[1]))


def path_length(points, closed=False):
    if len(points) < 2:
        return 0.0
    coords = [p[:2] for p in points]
    if closed:
        coords.append(coords[0])
    return LineString(coords).length


# heading of the tangent at every point
# closed rings take the direction from the previous to the next point, open lines the direction to the next point
def calculate_point_headings(points, closed=True):
    count = len(points)
    result = list()
    if count < 2:
        return [(p[0], p[1], 0.0) for p in points]

    for i in range(count):
        if closed:
            prev = points[(i - 1) % count]
            next = points[(i + 1) % count]
        elif i < count - 1:
            prev = points[i]
            next = points[i + 1]
        else:
            prev = points[i - 1]
            next = points[i]
        heading = positive_heading(get_heading(prev, next))
        result.append((points[i][0], points[i][1], heading))

    return result


# drop consecutive points closer than the tolerance, used after splicing cut points into arcs
def dedupe_points(points, tol=0.001):
    result = list()
    for point in points:
        if len(result) == 0 or distance(result[-1], point) > tol:
            result.append(point)
    return result
