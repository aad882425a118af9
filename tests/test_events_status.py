import json

import pytest

from solarops.events import emit_event, get_status_from_events, read_events, tail_events, EventTypes
from solarops.state import (
    create_run_dir, get_run_dir, write_run_json, read_run_json, list_runs, run_exists, new_run_id, is_valid_run_id,
)


def test_status_progression_basic():
    run_id = new_run_id()
    create_run_dir(run_id)
    assert get_status_from_events(run_id) == "unknown"
    emit_event(run_id, EventTypes.RUN_START, {"workflow": "deploy"})
    assert get_status_from_events(run_id) == "started"
    emit_event(run_id, EventTypes.TF_INIT, {})
    assert get_status_from_events(run_id) == "running"
    emit_event(run_id, EventTypes.DONE, {})
    assert get_status_from_events(run_id) == "succeeded"


def test_cancelled_and_failed_status():
    cancelled = new_run_id()
    create_run_dir(cancelled)
    emit_event(cancelled, EventTypes.CANCELLED, {})
    assert get_status_from_events(cancelled) == "cancelled"

    failed = "r-20260101-120000-zzzz"
    create_run_dir(failed)
    emit_event(failed, EventTypes.ERROR, {"reason": "boom"})
    assert get_status_from_events(failed) == "failed"


def test_malformed_lines_are_skipped():
    run_id = new_run_id()
    create_run_dir(run_id)
    emit_event(run_id, EventTypes.RUN_START, {})
    with open(get_run_dir(run_id) / "events.ndjson", "a") as f:
        f.write("{not json\n\n")
    emit_event(run_id, EventTypes.DONE, {"url": "http://x"})

    events = read_events(run_id)
    assert [e["type"] for e in events] == ["RUN_START", "DONE"]
    assert events[1]["data"] == {"url": "http://x"}


def test_emit_without_run_id_writes_nothing(solarops_home):
    emit_event(None, EventTypes.WARNING, {"reason": "library use"})
    assert not solarops_home.exists()


def test_tail_events_follow_stops_at_terminal_event():
    run_id = new_run_id()
    create_run_dir(run_id)
    emit_event(run_id, EventTypes.RUN_START, {})
    emit_event(run_id, EventTypes.ERROR, {})
    emit_event(run_id, EventTypes.WARNING, {})

    seen = [e["type"] for e in tail_events(run_id, follow=True, poll_interval=0)]
    assert seen == ["RUN_START", "ERROR"]


class TestRunIds:
    """Test run ID format and run directories."""

    def test_new_run_id_is_valid(self):
        run_id = new_run_id()
        assert run_id.startswith("r-")
        assert is_valid_run_id(run_id)

    def test_invalid_run_ids(self):
        assert not is_valid_run_id("d-20260101-120000-abcd")
        assert not is_valid_run_id("r-2026-120000-abcd")
        assert not is_valid_run_id("r-20260101-120000-AB!D")
        assert not is_valid_run_id("../etc")
        assert not is_valid_run_id("r-20260101-120000-abcd\n")

    def test_get_run_dir_rejects_bad_ids(self):
        with pytest.raises(ValueError, match="Invalid run ID"):
            get_run_dir("../../tmp")

    def test_run_json_and_listing(self):
        older = "r-20260101-120000-aaaa"
        newer = "r-20260102-120000-bbbb"
        for run_id in (older, newer):
            create_run_dir(run_id)
            write_run_json(run_id, "cleanup", {"region": "us-west-2"})

        assert list_runs() == [newer, older]
        assert run_exists(older)
        data = read_run_json(older)
        assert data["workflow"] == "cleanup"
        assert data["settings"]["region"] == "us-west-2"

    def test_read_missing_run(self):
        with pytest.raises(FileNotFoundError):
            read_run_json("r-20260101-120000-cccc")
