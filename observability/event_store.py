"""
In-memory audit event store.

Bounded and process-local: sessions are short-lived and never persisted, so
the event history only needs to cover what an operator looks at while the
process is running.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_ENVELOPE_KEYS = ("ts", "owner_id", "session_id", "component", "event_type", "severity", "correlation_id")


@dataclass
class StoredEvent:
    """An audit event stored in memory."""

    ts: datetime
    owner_id: Optional[str]
    session_id: Optional[str]
    component: str
    event_type: str
    severity: str
    correlation_id: Optional[str]
    payload: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "ts": self.ts.isoformat(),
            "owner_id": self.owner_id,
            "session_id": self.session_id,
            "component": self.component,
            "event_type": self.event_type,
            "severity": self.severity,
            "correlation_id": self.correlation_id,
        }
        result.update(self.payload)
        return result


class EventStore:
    """
    In-memory event store backed by a bounded deque (oldest events drop first).
    """

    def __init__(self, max_events: int = 10000):
        self._events: deque[StoredEvent] = deque(maxlen=max_events)
        self._max_events = max_events

    def store(self, event: Dict[str, Any]) -> None:
        ts_raw = event.get("ts")
        if isinstance(ts_raw, str):
            ts = datetime.fromisoformat(ts_raw.replace("Z", "+00:00"))
        else:
            ts = datetime.now(timezone.utc)

        self._events.append(StoredEvent(
            ts=ts,
            owner_id=event.get("owner_id"),
            session_id=event.get("session_id"),
            component=event.get("component", "unknown"),
            event_type=event.get("event_type", "unknown"),
            severity=event.get("severity", "info"),
            correlation_id=event.get("correlation_id"),
            payload={k: v for k, v in event.items() if k not in _ENVELOPE_KEYS},
        ))

    def query(
        self,
        owner_id: Optional[str] = None,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        since: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Query events with optional filters, oldest first.

        `event_type` ending in ".*" matches a prefix ("webhook.*").
        """
        results: List[StoredEvent] = []
        prefix = event_type[:-1] if event_type and event_type.endswith(".*") else None

        for event in self._events:
            if owner_id and event.owner_id != owner_id:
                continue
            if session_id and event.session_id != session_id:
                continue
            if prefix is not None:
                if not event.event_type.startswith(prefix):
                    continue
            elif event_type and event.event_type != event_type:
                continue
            if since and event.ts < since:
                continue

            results.append(event)
            if limit and len(results) >= limit:
                break

        return [e.to_dict() for e in results]

    def clear(self) -> None:
        self._events.clear()

    def get_stats(self) -> Dict[str, Any]:
        return {
            "total_events": len(self._events),
            "max_events": self._max_events,
            "oldest_event_ts": self._events[0].ts.isoformat() if self._events else None,
            "newest_event_ts": self._events[-1].ts.isoformat() if self._events else None,
        }


# Global event store instance
event_store = EventStore()
