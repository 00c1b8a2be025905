"""Audit events emitted on every entity state transition.

Events are a second observability channel next to logs. Recording an event
is fire-and-forget: a recorder that raises never fails the reconcile.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Event severities, matching the Kubernetes event types."""

    NORMAL = "Normal"
    WARNING = "Warning"


class EventReason(str, Enum):
    """Reasons attached to lifecycle events."""

    CREATE = "CREATE"
    MODIFY = "MODIFY"
    DELETE = "DELETE"
    ERROR = "ERROR"


class EventRecorder(Protocol):
    """Anything that accepts ``(severity, reason, message)``."""

    def __call__(self, event_type: str, reason: str, message: str) -> None: ...


class LoggingEventRecorder:
    """Event recorder that writes events to the audit logger.

    Used when no cluster event sink is wired in, for example by the CLI.
    """

    def __init__(self, subject: str) -> None:
        self._subject = subject
        self._audit = logging.getLogger(f"{__name__}.audit")

    def __call__(self, event_type: str, reason: str, message: str) -> None:
        level = logging.WARNING if event_type == EventType.WARNING.value else logging.INFO
        self._audit.log(
            level,
            message,
            extra={"subject": self._subject, "event_type": event_type, "reason": reason},
        )


def emit(
    recorder: EventRecorder | None,
    event_type: EventType,
    reason: EventReason,
    message: str,
    *args: Any,
) -> None:
    """Format and record one event without letting the recorder fail the caller."""
    if recorder is None:
        return
    text = message % args if args else message
    try:
        recorder(event_type.value, reason.value, text)
    except Exception:
        logger.exception(
            "Event recorder failed",
            extra={"event_type": event_type.value, "reason": reason.value, "event": text},
        )
