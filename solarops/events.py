"""
Event logging utilities for NDJSON format.
"""

import json
import logging
import time
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

from .state import get_run_dir

logger = logging.getLogger(__name__)


def emit_event(run_id: Optional[str], event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
    """
    Emit an event to the run's events.ndjson file.

    Runs without an ID (library use outside the CLI) only log the event.

    Args:
        run_id: Run ID or None
        event_type: Event type (e.g., "RUN_START", "TF_PLAN", "ERROR")
        data: Event data
    """
    data = data or {}
    logger.debug(f"{event_type}: {data}")

    if run_id is None:
        return

    events_file = get_run_dir(run_id) / "events.ndjson"

    event = {
        "ts": datetime.now().isoformat(),
        "type": event_type,
        "data": data
    }

    with open(events_file, "a") as f:
        f.write(json.dumps(event, default=str) + "\n")
        f.flush()


def read_events(run_id: str) -> list[Dict[str, Any]]:
    """
    Read all events from a run's events.ndjson file.

    Args:
        run_id: Run ID

    Returns:
        List of events
    """
    events_file = get_run_dir(run_id) / "events.ndjson"

    if not events_file.exists():
        return []

    events = []
    with open(events_file, "r") as f:
        for line in f:
            line = line.strip()
            if line:
                try:
                    events.append(json.loads(line))
                except json.JSONDecodeError:
                    continue  # Skip malformed lines

    return events


def get_last_event(run_id: str) -> Optional[Dict[str, Any]]:
    events = read_events(run_id)
    return events[-1] if events else None


def get_status_from_events(run_id: str) -> str:
    """
    Determine run status from its last event.

    Args:
        run_id: Run ID

    Returns:
        One of started, running, succeeded, cancelled, failed, unknown
    """
    last_event = get_last_event(run_id)
    if not last_event:
        return "unknown"

    status_map = {
        EventTypes.RUN_START: "started",
        EventTypes.DONE: "succeeded",
        EventTypes.CANCELLED: "cancelled",
        EventTypes.ERROR: "failed",
    }

    return status_map.get(last_event.get("type", ""), "running")


def tail_events(run_id: str, follow: bool = False, poll_interval: float = 0.5) -> Iterator[Dict[str, Any]]:
    """
    Generator that yields events, optionally waiting for new ones.

    Args:
        run_id: Run ID
        follow: If True, keep watching until a terminal event appears

    Yields:
        Event dictionaries
    """
    events_file = get_run_dir(run_id) / "events.ndjson"

    if not events_file.exists():
        return

    position = 0
    while True:
        with open(events_file, "r") as f:
            f.seek(position)
            while True:
                line = f.readline()
                if not line.endswith("\n"):
                    # EOF, or a line still being written
                    break
                position = f.tell()
                line = line.strip()
                if not line:
                    continue
                try:
                    event = json.loads(line)
                except json.JSONDecodeError:
                    continue
                yield event
                if follow and event.get("type") in TERMINAL_EVENTS:
                    return

        if not follow:
            return
        time.sleep(poll_interval)


class EventTypes:
    RUN_START = "RUN_START"
    PREREQS_OK = "PREREQS_OK"
    WARNING = "WARNING"
    CONFIRM_DECLINED = "CONFIRM_DECLINED"
    # Terraform
    TF_TFVARS = "TF_TFVARS"
    TF_INIT = "TF_INIT"
    TF_VALIDATE = "TF_VALIDATE"
    TF_PLAN = "TF_PLAN"
    TF_APPLY_DONE = "TF_APPLY_DONE"
    TF_DESTROY_PLAN = "TF_DESTROY_PLAN"
    TF_DESTROY_DONE = "TF_DESTROY_DONE"
    TF_OUTPUTS = "TF_OUTPUTS"
    # Kubernetes
    KUBECONFIG_UPDATED = "KUBECONFIG_UPDATED"
    KUBECONFIG_CLEANED = "KUBECONFIG_CLEANED"
    APP_READY = "APP_READY"
    APP_URL = "APP_URL"
    SMOKE_OK = "SMOKE_OK"
    SMOKE_FAIL = "SMOKE_FAIL"
    K8S_CLEANED = "K8S_CLEANED"
    # Cluster lifecycle
    CLUSTER_CREATED = "CLUSTER_CREATED"
    EKSCTL_DELETE = "EKSCTL_DELETE"
    CLEANUP_STEP = "CLEANUP_STEP"
    LOCAL_FILES_CLEANED = "LOCAL_FILES_CLEANED"
    VERIFY = "VERIFY"
    # Terminal
    DONE = "DONE"
    CANCELLED = "CANCELLED"
    ERROR = "ERROR"


TERMINAL_EVENTS = {EventTypes.DONE, EventTypes.CANCELLED, EventTypes.ERROR}
