"""AI-to-human handoff: durable handoff records and human-queue notification.

Exports:
    EscalationWorkflow: initiate / complete / reassign / list_active.
    HandoffRecord: The durable handoff, source of truth for the escalation.
    RedisStreamNotifier: Best-effort queue notification on Redis Streams.
"""

from __future__ import annotations

from src.relay.escalation.schemas import EscalationUrgency, HandoffRecord, HandoffStatus

__all__ = [
    "EscalationUrgency",
    "EscalationWorkflow",
    "HandoffRecord",
    "HandoffStatus",
    "RedisStreamNotifier",
]


def __getattr__(name: str):  # noqa: N807
    if name == "EscalationWorkflow":
        from src.relay.escalation.workflow import EscalationWorkflow
        return EscalationWorkflow
    if name == "RedisStreamNotifier":
        from src.relay.escalation.notifier import RedisStreamNotifier
        return RedisStreamNotifier
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
