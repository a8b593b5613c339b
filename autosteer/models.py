from dataclasses import dataclass, field, replace
from enum import Enum
from math import pi

from autosteer.errors import ErrorType, GenerationError
from autosteer.geometry import calculate_point_headings, distance, get_heading, offset_point

"""
Vehicle Inputs
"""


@dataclass(frozen=True)
class Pose:
    """Vehicle state at one GPS fix. Heading in radians clockwise from north, speed in m/s."""

    easting: float
    northing: float
    heading: float
    speed: float = 0.0

    @property
    def position(self):
        return (self.easting, self.northing)

    @property
    def speed_kph(self):
        return self.speed * 3.6


@dataclass(frozen=True)
class ReferenceLine:
    """The two point AB line the parallel guidance lines are derived from.

    Immutable once selected: every parallel line is computed from it on demand
    by shifting both points perpendicular to the AB heading.
    """

    point_a: tuple
    point_b: tuple
    name: str = "AB"

    @property
    def heading(self):
        return get_heading(self.point_a, self.point_b)

    @property
    def is_degenerate(self):
        return distance(self.point_a, self.point_b) < 0.01

    @property
    def midpoint(self):
        return (
            (self.point_a[0] + self.point_b[0]) / 2,
            (self.point_a[1] + self.point_b[1]) / 2,
        )

    # shift both points along the AB perpendicular (heading + 90°), positive distances move to the right of A -> B
    def offset(self, dist, name=None):
        perp = self.heading + pi / 2
        return ReferenceLine(
            offset_point(self.point_a, perp, dist),
            offset_point(self.point_b, perp, dist),
            name if name is not None else self.name,
        )


@dataclass(frozen=True)
class VehicleConfig:
    wheelbase: float = 3.3
    # distance between adjacent parallel lines, implement width minus overlap
    track_width: float = 6.0
    max_steer_angle: float = 35.0
    look_ahead_hold: float = 4.0
    min_look_ahead: float = 2.0
    look_ahead_mult: float = 1.4
    integral_gain: float = 0.0
    use_stanley: bool = False
    stanley_heading_gain: float = 1.0
    stanley_distance_gain: float = 0.8
    stanley_integral_gain: float = 0.0
    uturn_compensation: float = 1.0

    @classmethod
    def from_settings(cls, settings):
        try:
            return cls(
                wheelbase=settings["wheelbase"],
                track_width=settings["trackWidth"],
                max_steer_angle=settings["maxSteerAngle"],
                look_ahead_hold=settings.get("goalPointLookAheadHold", 4.0),
                min_look_ahead=settings.get("minLookAheadDistance", 2.0),
                look_ahead_mult=settings.get("goalPointLookAheadMult", 1.4),
                integral_gain=settings.get("purePursuitIntegralGain", 0.0),
                use_stanley=settings.get("useStanley", False),
                stanley_heading_gain=settings.get("stanleyHeadingErrorGain", 1.0),
                stanley_distance_gain=settings.get("stanleyDistanceErrorGain", 0.8),
                stanley_integral_gain=settings.get("stanleyIntegralGain", 0.0),
                uturn_compensation=settings.get("uTurnCompensation", 1.0),
            )
        except KeyError as e:
            raise GenerationError(
                ErrorType.BAD_INPUT_DATA, f"Missing vehicle setting {e}"
            )


"""
Guidance State
"""


@dataclass(frozen=True)
class GuidanceFilterState:
    """Controller memory carried between ticks, reset whenever the active line changes."""

    integral: float = 0.0
    # low-pass filtered cross track error
    previous_error: float = 0.0
    # filtered error at the last derivative sample
    previous_error_last: float = 0.0
    counter: int = 0


"""
Field Geometry
"""


@dataclass(frozen=True)
class BoundaryRing:
    """Closed outer field boundary, last point implicitly joins the first.

    Edits never happen in place: replaced() hands back a new ring with a bumped
    version so anchors taken against the old ring can tell they are stale.
    """

    points: tuple
    version: int = 0

    def __post_init__(self):
        if len(self.points) < 3:
            raise GenerationError(
                ErrorType.UNUSABLE_INPUT, "Boundary ring needs at least 3 vertices."
            )
        object.__setattr__(self, "points", tuple((p[0], p[1]) for p in self.points))

    def __len__(self):
        return len(self.points)

    def replaced(self, points):
        return BoundaryRing(tuple(points), self.version + 1)


class HeadlandMode(Enum):
    # round joins when offsetting, the longer arc is kept when clipping
    CURVE = 0

    # mitred joins when offsetting, the shorter arc is kept when clipping
    LINE = 1

    @property
    def join_style(self):
        return "round" if self is HeadlandMode.CURVE else "mitre"


@dataclass(frozen=True)
class HeadlandLine:
    """Working boundary offset in from the field edge.

    Closed when freshly built, open after clipping. Every point carries the
    tangent heading, recomputed whenever the points change.
    """

    points: tuple
    is_closed: bool = True
    move_distance: float = 0.0
    mode: HeadlandMode = HeadlandMode.CURVE
    version: int = 0

    @classmethod
    def from_coords(cls, coords, is_closed=True, move_distance=0.0, mode=HeadlandMode.CURVE, version=0):
        points = calculate_point_headings([(c[0], c[1]) for c in coords], is_closed)
        return cls(tuple(points), is_closed, move_distance, mode, version)

    def __len__(self):
        return len(self.points)

    @property
    def coords(self):
        return [(p[0], p[1]) for p in self.points]


@dataclass(frozen=True)
class BoundaryAnchor:
    """A point picked on a ring, stored as segment index and parameter rather than raw coordinates."""

    segment_index: int
    t: float
    position: tuple
    ring_version: int = 0

    # world position of the anchor against the given ring
    # the (segment, t) pair is only meaningful on the ring version it was taken from, otherwise fall back to the stored position
    def resolve(self, ring_points, ring_version=None):
        count = len(ring_points)
        if ring_version is not None and ring_version != self.ring_version:
            return self.position
        if count < 2 or self.segment_index >= count:
            return self.position

        a = ring_points[self.segment_index]
        b = ring_points[(self.segment_index + 1) % count]
        return (a[0] + self.t * (b[0] - a[0]), a[1] + self.t * (b[1] - a[1]))


"""
YouTurn State
"""


class TurnPhase(Enum):
    IDLE = 0
    APPROACHING = 1
    TRIGGERED = 2


class TractorZone(Enum):
    OUTSIDE_BOUNDARY = 0
    IN_HEADLAND = 1
    IN_CULTIVATED_AREA = 2


@dataclass(frozen=True)
class TurnState:
    """Everything the U-turn state machine remembers between ticks.

    A fresh value is returned from every step, nothing mutates it in place.
    """

    phase: TurnPhase = TurnPhase.IDLE
    turn_path: tuple = ()
    is_turn_left: bool = False
    # captured when the path is created, the heading has flipped ~180° by the time the turn completes
    was_heading_same_way_at_start: bool = True
    # index of the active parallel line relative to the reference line
    paths_away: int = 0
    # the line the current turn will end on, preview only until completion
    next_paths_away: int = 0
    since_last_turn_ticks: int = 10
    last_completion_position: tuple = None
    distance_to_headland: float = float("inf")
    last_turn_was_left: bool = None

    @property
    def is_turning(self):
        return self.phase is TurnPhase.TRIGGERED

    def evolve(self, **changes):
        return replace(self, **changes)


@dataclass
class TickOutput:
    steer_angle: float = 0.0
    cross_track_error: float = 0.0
    phase: TurnPhase = TurnPhase.IDLE
    paths_away: int = 0
    turn_path: list = field(default_factory=list)
    next_line_preview: ReferenceLine = None
    guidance_line: ReferenceLine = None
    status: str = None
    guidance_applied: bool = False
