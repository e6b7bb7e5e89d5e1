"""
Structured JSON audit events.

Every event is written as one JSON line to stdout and kept in the in-memory
event store so operators can query the recent history of an owner or session.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from .event_store import event_store


class Component(str, Enum):
    """Event source components."""

    CONTROL_PLANE = "control_plane"


class Severity(str, Enum):
    """Event severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class EventEmitter:
    """Emits structured JSON audit events."""

    def __init__(self, component: Component):
        self.component = component

    def emit(
        self,
        event_type: str,
        owner_id: Optional[str] = None,
        session_id: Optional[str] = None,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        **kwargs: Any,
    ) -> None:
        """
        Emit a structured audit event.

        Args:
            event_type: Stable event type string (e.g. "session.created")
            owner_id: Owner (user) the event relates to, if known
            session_id: External voice session id, if known
            severity: Event severity level
            correlation_id: Optional id tying related events together
            **kwargs: Event-specific fields (None values are dropped)
        """
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "owner_id": owner_id,
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id or owner_id,
        }
        event.update({k: v for k, v in kwargs.items() if v is not None})

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()

        event_store.store(event)
