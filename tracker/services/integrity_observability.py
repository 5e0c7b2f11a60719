"""Data-integrity alerting for the history ledger.

A LedgerInconsistencyError means an earlier write broke the one-open-entry
invariant. Each occurrence is logged at ERROR and kept in an in-memory ring
buffer; ALERT_RULES raise an alert when occurrences cluster.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from flask import g, has_request_context, request

logger = logging.getLogger(__name__)

_INTEGRITY_EVENTS: list[dict[str, Any]] = []
_MAX_INTEGRITY_EVENTS = 5000


ALERT_RULES = (
    {
        "event_type": "ledger_inconsistency",
        "threshold": 1,
        "window_seconds": 3600,
        "severity": "high",
        "code": "INT-LEDGER-001",
    },
    {
        "event_type": "concurrent_position_update",
        "threshold": 5,
        "window_seconds": 300,
        "severity": "medium",
        "code": "INT-CAS-001",
    },
)


def _trim() -> None:
    if len(_INTEGRITY_EVENTS) > _MAX_INTEGRITY_EVENTS:
        del _INTEGRITY_EVENTS[: _MAX_INTEGRITY_EVENTS // 2]


def record_integrity_event(
    *,
    event_type: str,
    reason: str,
    severity: str = "error",
    organization_id: str | None = None,
    item_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    path = None
    request_id = None
    if has_request_context():
        path = request.path
        request_id = getattr(g, "request_id", None)
        if organization_id is None:
            organization_id = getattr(g, "jwt_organization_id", None)

    event = {
        "ts": time.time(),
        "event_type": event_type,
        "severity": severity,
        "reason": reason,
        "organization_id": organization_id,
        "item_id": item_id,
        "path": path,
        "request_id": request_id,
        "details": details or {},
    }
    _INTEGRITY_EVENTS.append(event)
    _trim()

    log = logger.error if severity == "error" else logger.warning
    log(
        "Data integrity alert [%s] item=%s: %s",
        event_type, item_id, reason,
        extra={
            "event_type": event_type,
            "organization_id": organization_id,
            "item_id": item_id,
            "reason": reason,
        },
    )
    return event


def _events_for(organization_id: str | None) -> list[dict[str, Any]]:
    if organization_id is None:
        return list(_INTEGRITY_EVENTS)
    return [e for e in _INTEGRITY_EVENTS if e["organization_id"] == organization_id]


def get_recent_integrity_events(
    *,
    seconds: int = 3600,
    event_type: str | None = None,
    organization_id: str | None = None,
) -> list[dict[str, Any]]:
    """Events from the last ``seconds``; one organization's only when given."""
    cutoff = time.time() - seconds
    rows = [e for e in _events_for(organization_id) if e["ts"] >= cutoff]
    if event_type:
        rows = [e for e in rows if e["event_type"] == event_type]
    return rows


def evaluate_integrity_alerts(*, organization_id: str | None = None, now: float | None = None) -> dict[str, Any]:
    """Apply ALERT_RULES. Pass ``organization_id`` for tenant-facing callers;
    None evaluates across every organization (operator view)."""
    now = now or time.time()
    events = _events_for(organization_id)
    triggered = []
    counts = {}

    for rule in ALERT_RULES:
        cutoff = now - rule["window_seconds"]
        matched = [
            e for e in events
            if e["event_type"] == rule["event_type"] and e["ts"] >= cutoff
        ]
        counts[rule["event_type"]] = len(matched)
        if len(matched) >= rule["threshold"]:
            triggered.append({
                "code": rule["code"],
                "event_type": rule["event_type"],
                "severity": rule["severity"],
                "window_seconds": rule["window_seconds"],
                "threshold": rule["threshold"],
                "observed": len(matched),
                "latest": matched[-1] if matched else None,
            })

    return {"counts": counts, "alerts": triggered}


def reset_integrity_events() -> None:
    _INTEGRITY_EVENTS.clear()
