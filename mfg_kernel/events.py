"""
Business event side channel (``mfg_kernel.events``).

Responsibility
--------------
Lifecycle managers report notable business facts (MO created, shortage
detected, goods received, approval escalated) to an injected, append-only
``EventSink``.  The sink is a constructor dependency, never a module-level
singleton, so tests substitute ``InMemoryEventSink``.

Invariants enforced
-------------------
* Emission is fire-and-forget: ``emit_event`` never raises.  A failing sink
  is logged at WARNING and the primary operation continues.

Audit relevance
---------------
The event stream is the audit trail of the manufacturing floor.  Severity
``high`` marks events that need human attention (shortages, failed QC,
critical cost variance, SLA breaches).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from mfg_kernel.logging_config import get_logger

logger = get_logger("events")


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class BusinessEvent:
    """One appended business event."""
    event_type: str
    entity_type: str
    entity_id: str
    actor_id: str
    occurred_at: datetime | None = None
    severity: Severity = Severity.LOW
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class EventSink(Protocol):
    """Append-only destination for business events."""

    def emit(self, event: BusinessEvent) -> None:
        ...


class InMemoryEventSink:
    """Collects events in a list.  Used by tests and local runs."""

    def __init__(self) -> None:
        self.events: list[BusinessEvent] = []

    def emit(self, event: BusinessEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[BusinessEvent]:
        return [e for e in self.events if e.event_type == event_type]

    def clear(self) -> None:
        self.events.clear()


class LoggingEventSink:
    """Writes each event as a structured log record.  The default sink."""

    def __init__(self, logger_name: str = "business_events"):
        self._logger = get_logger(logger_name)

    def emit(self, event: BusinessEvent) -> None:
        self._logger.info(
            event.event_type,
            extra={
                "entity_type": event.entity_type,
                "entity_id": event.entity_id,
                "event_actor_id": event.actor_id,
                "severity": event.severity.value,
                "occurred_at": event.occurred_at,
                "event_metadata": event.metadata,
            },
        )


def emit_event(
    sink: EventSink,
    event_type: str,
    *,
    entity_type: str,
    entity_id: Any,
    actor_id: str,
    occurred_at: datetime | None = None,
    severity: Severity = Severity.LOW,
    metadata: dict[str, Any] | None = None,
) -> None:
    """Emit a business event; failures are logged and swallowed."""
    event = BusinessEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=str(entity_id),
        actor_id=actor_id,
        occurred_at=occurred_at,
        severity=severity,
        metadata=dict(metadata or {}),
    )
    try:
        sink.emit(event)
    except Exception:
        logger.warning(
            "business_event_emit_failed",
            extra={"event_type": event_type, "entity_id": str(entity_id)},
            exc_info=True,
        )
