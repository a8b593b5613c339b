import logging
import queue
import threading

from autosteer import field_files
from autosteer.errors import AlgorithmError, GenerationError
from autosteer.guidance import compute_steering
from autosteer.headlands import build_headland, clip_at_line, headland_distance, nearest_anchor
from autosteer.models import (
    BoundaryRing,
    GuidanceFilterState,
    HeadlandMode,
    TickOutput,
    TurnPhase,
    TurnState,
)
from autosteer.turn_creation import DubinsTurnCreationService
from autosteer.youturn import (
    YouTurnConfig,
    following_status,
    resolve_tool_width,
    step_youturn,
    trigger_manual_turn,
)

logger = logging.getLogger(__name__)


class PersistenceQueue:
    """Writes field files on a background thread so the tick never waits on disk."""

    def __init__(self, field_directory):
        self.field_directory = field_directory
        self._queue = queue.Queue()
        self._thread = threading.Thread(
            target=self._run, daemon=True, name="FieldPersistence"
        )
        self._thread.start()

    def save_headland(self, headland):
        self._queue.put((field_files.save_headland, (self.field_directory, headland)))

    def save_tracks(self, reference_lines):
        self._queue.put(
            (field_files.save_tracks, (self.field_directory, list(reference_lines)))
        )

    # block until everything queued so far has been written
    def flush(self):
        self._queue.join()

    def shutdown(self, timeout=2.0):
        self._queue.put(None)
        self._thread.join(timeout=timeout)

    def _run(self):
        while True:
            item = self._queue.get()
            try:
                if item is None:
                    break
                job, args = item
                try:
                    job(*args)
                except Exception:
                    # a failed write must not stop the worker, later saves still go through
                    logger.exception("Failed to write field file")
            finally:
                self._queue.task_done()


class FieldSession:
    """Owns everything the tick needs for one field.

    on_pose must only ever be called from one thread. Headland and boundary
    edits build a complete new object before swapping it in, so a tick never
    sees a half edited ring.
    """

    def __init__(
        self,
        vehicle,
        config=None,
        field_directory=None,
        turn_service=None,
        youturn_enabled=True,
    ):
        self.vehicle = vehicle
        self.config = config if config is not None else YouTurnConfig()
        self.turn_service = (
            turn_service if turn_service is not None else DubinsTurnCreationService()
        )
        self.youturn_enabled = youturn_enabled

        self.reference_line = None
        self.boundary = None
        self.headland = None
        self.anchors = list()
        self.filter_state = GuidanceFilterState()
        self.turn_state = TurnState()
        self.last_pose = None
        self.status = None

        self.persistence = (
            PersistenceQueue(field_directory) if field_directory is not None else None
        )

    @property
    def has_headland(self):
        return self.headland is not None

    def set_status(self, status):
        self.status = status
        logger.info(status)

    """
    Tick
    """

    def on_pose(self, pose):
        self.last_pose = pose
        output = TickOutput(
            phase=self.turn_state.phase, paths_away=self.turn_state.paths_away
        )
        if self.reference_line is None or self.reference_line.is_degenerate:
            output.status = self.status
            return output

        try:
            turn = None
            turn_state = self.turn_state
            filter_state = self.filter_state
            if self.youturn_enabled:
                turn_state, turn = step_youturn(
                    turn_state,
                    pose,
                    self.reference_line,
                    self.headland,
                    self.boundary,
                    self.vehicle,
                    self.config,
                    self.turn_service,
                )
                if turn.reset_guidance:
                    filter_state = GuidanceFilterState()

            if turn is not None and turn.guidance_applied:
                output.steer_angle = turn.steer_angle
                output.cross_track_error = turn.cross_track_error
                output.guidance_applied = True
            else:
                result = compute_steering(
                    pose,
                    self.reference_line,
                    turn_state.paths_away,
                    filter_state,
                    self.vehicle,
                    is_turn_triggered=turn_state.is_turning,
                )
                if result is not None:
                    filter_state = result.filter_state
                    output.steer_angle = result.steer_angle
                    output.cross_track_error = result.cross_track_error
                    output.guidance_line = result.guidance_line
                    output.guidance_applied = True
        except (GenerationError, AlgorithmError) as e:
            logger.error("Tick failed, keeping previous state: %s", e)
            output.status = e.error.message
            return output
        except Exception:
            # the tick loop must keep running, state stays as it was before this tick
            logger.exception("Unexpected failure during tick, keeping previous state")
            return output

        self.turn_state = turn_state
        self.filter_state = filter_state
        if turn is not None:
            if turn.status is not None:
                self.status = turn.status
            output.turn_path = turn.turn_path
            output.next_line_preview = turn.next_line
        output.phase = turn_state.phase
        output.paths_away = turn_state.paths_away
        output.status = self.status
        return output

    """
    Collaborator Inputs
    """

    def set_reference_line(self, reference_line):
        self.reference_line = reference_line
        # a new line means a new set of parallel paths, nothing carries over
        self.filter_state = GuidanceFilterState()
        self.turn_state = TurnState()
        if reference_line is None:
            return
        self.set_status(following_status(0, self.vehicle.track_width))
        if self.persistence is not None:
            self.persistence.save_tracks([reference_line])

    def set_boundary(self, points):
        if isinstance(points, BoundaryRing):
            points = points.points
        if self.boundary is None:
            self.boundary = BoundaryRing(tuple(points))
        else:
            self.boundary = self.boundary.replaced(points)

    """
    Headland Editing
    """

    def build_headland(self, distance=None, mode=HeadlandMode.CURVE, passes=1):
        try:
            if distance is None:
                distance = headland_distance(
                    resolve_tool_width(self.config, self.vehicle), passes
                )
            version = self.headland.version + 1 if self.headland is not None else 0
            headland, errors = build_headland(self.boundary, distance, mode, version)
        except GenerationError as e:
            self.set_status(f"Headland not built: {e.error.message}")
            return None

        self.headland = headland
        self.anchors = list()
        self.set_status(f"Headland built at {distance:.1f}m")
        for error in errors:
            logger.warning(error.message)
        if self.persistence is not None:
            self.persistence.save_headland(headland)
        return headland

    # snap a picked point to the headland, or to the boundary if there is no headland yet
    # only the last two picks are kept
    def select_headland_point(self, query):
        ring = self.headland if self.headland is not None else self.boundary
        if ring is None:
            self.set_status("Nothing to select a point on")
            return None
        anchor = nearest_anchor(ring, query)
        self.anchors = (self.anchors + [anchor])[-2:]
        return anchor

    def clip_headland(self, mode=None):
        if self.headland is None or len(self.anchors) < 2:
            self.set_status("Select two points on the headland to clip it")
            return None
        try:
            clipped = clip_at_line(self.headland, self.anchors[0], self.anchors[1], mode)
        except GenerationError as e:
            self.set_status(f"Headland not clipped: {e.error.message}")
            return None

        self.headland = clipped
        self.anchors = list()
        self.set_status(f"Headland clipped to {len(clipped)} points")
        if self.persistence is not None:
            self.persistence.save_headland(clipped)
        return clipped

    def clear_headland(self):
        self.headland = None
        self.anchors = list()
        self.set_status("Headland cleared")
        if self.persistence is not None:
            self.persistence.save_headland(None)

    def trigger_manual_turn(self, turn_left):
        if self.last_pose is None:
            self.set_status("No position yet")
            return False
        self.turn_state, output = trigger_manual_turn(
            self.turn_state,
            self.last_pose,
            self.reference_line,
            self.headland,
            self.boundary,
            self.vehicle,
            self.config,
            turn_left,
            self.turn_service,
        )
        self.set_status(output.status)
        return output.phase is TurnPhase.TRIGGERED

    def close(self):
        if self.persistence is not None:
            self.persistence.shutdown()
