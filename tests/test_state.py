import json

from core.state_exporter import RuntimeSnapshotExporter, RuntimeState
from shared.chat.errors import NoLiveContentError
from shared.platforms.state import AdapterPhase, PhaseTracker
from shared.storage.chat_events import ChatEventStore
from tests.helpers import make_message


def test_tracker_reports_connected_only_on_joined(sink):
    tracker = PhaseTracker("twitch", sink)

    assert tracker.advance(AdapterPhase.CONNECTING)
    assert tracker.advance(AdapterPhase.AUTHENTICATING)
    assert sink.updates == []

    assert tracker.advance(AdapterPhase.JOINED)
    assert tracker.advance(AdapterPhase.RECEIVING)
    assert sink.updates == [("twitch", True)]
    assert tracker.connected


def test_tracker_rejects_skipping_phases(sink):
    tracker = PhaseTracker("kick", sink)

    assert not tracker.advance(AdapterPhase.RECEIVING)
    assert tracker.phase == AdapterPhase.DISCONNECTED
    assert sink.updates == []


def test_same_phase_is_a_no_op(sink):
    tracker = PhaseTracker("kick", sink)
    tracker.advance(AdapterPhase.CONNECTING)
    tracker.advance(AdapterPhase.JOINED)

    assert tracker.advance(AdapterPhase.JOINED)
    assert sink.updates == [("kick", True)]


def test_reset_reports_disconnect_from_any_phase(sink):
    tracker = PhaseTracker("youtube", sink)
    tracker.advance(AdapterPhase.CONNECTING)
    tracker.reset()
    tracker.reset()

    assert tracker.phase == AdapterPhase.DISCONNECTED
    assert sink.updates == [("youtube", False), ("youtube", False)]


def test_runtime_state_tracks_status_and_errors():
    state = RuntimeState()
    heard = []
    state.subscribe(lambda platform, connected: heard.append((platform, connected)))

    state.update_status("twitch", True)
    state.update_status("twitch", True)
    state.record_error("youtube", NoLiveContentError("offline", platform="youtube"))

    assert state.is_connected("twitch")
    assert not state.is_connected("kick")
    assert state.connection_status() == {"twitch": True, "kick": False, "youtube": False}
    assert heard == [("twitch", True), ("twitch", True)]

    youtube = state.snapshot()["youtube"]
    assert youtube["last_error"] == "offline"
    assert youtube["last_error_category"] == "no_live_content"
    assert youtube["error_count"] == 1


def test_unknown_platform_is_tolerated():
    state = RuntimeState()
    state.update_status("rumble", True)
    state.record_error("rumble", ValueError("x"))

    assert state.is_connected("rumble")
    assert state.last_error("rumble") == "x"


def test_exporter_writes_snapshot_file(tmp_path):
    state = RuntimeState()
    store = ChatEventStore(retention=10)
    store.add(make_message("1", 0))
    state.update_status("twitch", True)

    target = tmp_path / "state" / "runtime.json"
    exporter = RuntimeSnapshotExporter(state=state, store=store, path=target)

    assert exporter.publish() == target
    payload = json.loads(target.read_text(encoding="utf-8"))
    assert payload["platforms"]["twitch"]["connected"] is True
    assert payload["messages"] == {
        "count": 1,
        "retention": 10,
        "newest_ts": "2024-05-01T12:00:00Z",
    }
