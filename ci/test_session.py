import pytest

from autosteer import field_files
from autosteer import session as session_module
from autosteer.field_files import load_headland, load_tracks
from autosteer.models import HeadlandMode, Pose, ReferenceLine, TurnPhase, VehicleConfig
from autosteer.session import FieldSession
from autosteer.turn_creation import TurnCreationResult

BOUNDARY = [(-120, -115), (120, -115), (120, 115), (-120, 115)]
REFERENCE = ReferenceLine((0.0, 0.0), (0.0, 100.0))


class NoRoomService:
    def create_turn(self, request):
        return TurnCreationResult(False, failure_reason="no room")


@pytest.fixture
def field_session(tmp_path):
    session = FieldSession(
        VehicleConfig(track_width=6.0),
        field_directory=str(tmp_path),
        turn_service=NoRoomService(),
    )
    yield session
    session.close()


def north(northing, easting=0.0):
    return Pose(easting, northing, 0.0, 2.0)


class TestTick:
    def test_no_line_no_guidance(self, field_session):
        output = field_session.on_pose(north(0.0))
        assert not output.guidance_applied
        assert output.phase is TurnPhase.IDLE

    def test_follows_reference_line(self, field_session):
        field_session.set_reference_line(REFERENCE)
        output = field_session.on_pose(north(10.0, easting=0.5))
        assert output.guidance_applied
        assert output.steer_angle < 0
        assert output.cross_track_error == pytest.approx(0.5)
        assert output.status == "Following path 0 (0.0m offset)"

    def test_new_line_resets_filter(self, field_session):
        field_session.vehicle = VehicleConfig(track_width=6.0, integral_gain=1.0)
        field_session.set_reference_line(REFERENCE)
        for i in range(5):
            field_session.on_pose(north(10.0 + i, easting=1.0))
        assert field_session.filter_state.integral != 0.0
        field_session.set_reference_line(ReferenceLine((10.0, 0.0), (10.0, 100.0)))
        assert field_session.filter_state.integral == 0.0

    def test_failure_keeps_previous_state(self, field_session, monkeypatch):
        field_session.set_reference_line(REFERENCE)
        field_session.set_boundary(BOUNDARY)
        field_session.build_headland(20.0)
        before = field_session.turn_state

        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(session_module, "step_youturn", broken)
        output = field_session.on_pose(north(50.0))
        assert field_session.turn_state is before
        assert not output.guidance_applied

    def test_turn_created_approaching_headland(self, field_session):
        field_session.set_reference_line(REFERENCE)
        field_session.set_boundary(BOUNDARY)
        field_session.build_headland(20.0)
        output = field_session.on_pose(north(50.0))
        assert output.phase is TurnPhase.APPROACHING
        assert len(output.turn_path) > 0
        assert output.next_line_preview is not None
        # track guidance keeps steering until the turn is triggered
        assert output.guidance_applied

    def test_youturn_disabled(self):
        session = FieldSession(VehicleConfig(), youturn_enabled=False)
        session.set_reference_line(REFERENCE)
        session.set_boundary(BOUNDARY)
        session.build_headland(20.0)
        output = session.on_pose(north(50.0))
        assert output.phase is TurnPhase.IDLE
        assert output.guidance_applied

    def test_manual_turn(self, field_session):
        assert not field_session.trigger_manual_turn(True)
        field_session.set_reference_line(REFERENCE)
        field_session.set_boundary(BOUNDARY)
        field_session.on_pose(north(50.0))
        assert field_session.trigger_manual_turn(False)
        assert field_session.turn_state.phase is TurnPhase.TRIGGERED
        assert field_session.status == "Manual right U-turn started"


class TestHeadlandEditing:
    def test_build_reports_status(self, field_session):
        field_session.set_boundary(BOUNDARY)
        headland = field_session.build_headland(20.0, HeadlandMode.LINE)
        assert field_session.has_headland
        assert headland.mode is HeadlandMode.LINE
        assert field_session.status == "Headland built at 20.0m"

    def test_build_from_tool_width(self, field_session):
        field_session.set_boundary(BOUNDARY)
        field_session.build_headland(passes=2)
        assert field_session.headland.move_distance == 12.0

    def test_failed_build_keeps_previous_headland(self, field_session):
        field_session.set_boundary(BOUNDARY)
        first = field_session.build_headland(20.0)
        assert field_session.build_headland(500.0) is None
        assert field_session.headland is first
        assert field_session.status.startswith("Headland not built")

    def test_rebuild_bumps_version(self, field_session):
        field_session.set_boundary(BOUNDARY)
        first = field_session.build_headland(20.0)
        second = field_session.build_headland(10.0)
        assert second.version == first.version + 1

    def test_boundary_edit_bumps_version(self, field_session):
        field_session.set_boundary(BOUNDARY)
        field_session.set_boundary(BOUNDARY[::-1])
        assert field_session.boundary.version == 1

    def test_clip(self, field_session):
        field_session.set_boundary(BOUNDARY)
        field_session.build_headland(20.0, HeadlandMode.LINE)
        assert field_session.clip_headland() is None
        assert field_session.status == "Select two points on the headland to clip it"

        field_session.select_headland_point((-200, 50))
        field_session.select_headland_point((50, -10))
        field_session.select_headland_point((-10, 100))
        assert len(field_session.anchors) == 2
        clipped = field_session.clip_headland()
        assert clipped is not None
        assert not field_session.headland.is_closed
        assert field_session.anchors == []
        assert field_session.status.startswith("Headland clipped to")

    def test_select_without_rings(self, field_session):
        assert field_session.select_headland_point((0, 0)) is None

    def test_clear(self, field_session):
        field_session.set_boundary(BOUNDARY)
        field_session.build_headland(20.0)
        field_session.clear_headland()
        assert not field_session.has_headland
        assert field_session.status == "Headland cleared"


class TestPersistence:
    def test_headland_written_in_background(self, field_session, tmp_path):
        field_session.set_boundary(BOUNDARY)
        field_session.build_headland(20.0)
        field_session.persistence.flush()
        loaded = load_headland(str(tmp_path))
        assert loaded is not None
        assert loaded.move_distance == 20.0
        assert len(loaded) == len(field_session.headland)

    def test_reference_line_written(self, field_session, tmp_path):
        field_session.set_reference_line(REFERENCE)
        field_session.persistence.flush()
        tracks = load_tracks(str(tmp_path))
        assert len(tracks) == 1
        assert tracks[0].point_b == pytest.approx((0.0, 100.0))

    def test_cleared_headland_written(self, field_session, tmp_path):
        field_session.set_boundary(BOUNDARY)
        field_session.build_headland(20.0)
        field_session.clear_headland()
        field_session.persistence.flush()
        assert load_headland(str(tmp_path)) is None

    def test_failed_write_keeps_the_worker_running(self, field_session, tmp_path, monkeypatch):
        def broken(*args):
            raise ValueError("unwritable headland")

        monkeypatch.setattr(field_files, "save_headland", broken)
        field_session.persistence.save_headland(None)
        field_session.persistence.flush()
        monkeypatch.undo()

        field_session.set_reference_line(REFERENCE)
        field_session.persistence.flush()
        assert len(load_tracks(str(tmp_path))) == 1
