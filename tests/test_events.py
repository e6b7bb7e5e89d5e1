"""
Audit event tests.
Tests the JSON event format and the in-memory event store.
"""
import json
from datetime import datetime, timedelta, timezone

from control_plane.events import control_plane_emitter
from observability.event_store import EventStore, event_store
from observability.events import Component, EventEmitter, Severity


class TestEventFormat:
    def test_required_fields(self, capsys):
        emitter = EventEmitter(Component.CONTROL_PLANE)
        emitter.emit("test.event", owner_id="u1", session_id="s-1", severity=Severity.INFO)

        event = json.loads(capsys.readouterr().out.strip())
        assert event["event_type"] == "test.event"
        assert event["owner_id"] == "u1"
        assert event["session_id"] == "s-1"
        assert event["component"] == "control_plane"
        assert event["severity"] == "info"
        assert event["correlation_id"] == "s-1"
        datetime.fromisoformat(event["ts"])

    def test_none_fields_dropped(self, capsys):
        EventEmitter(Component.CONTROL_PLANE).emit("test.event", detail=None, count=3)

        event = json.loads(capsys.readouterr().out.strip())
        assert "detail" not in event
        assert event["count"] == 3

    def test_emit_stores_event(self, capsys):
        control_plane_emitter.session_ended("u1", "s-1", reason="timeout")

        [stored] = event_store.query(session_id="s-1")
        assert stored["event_type"] == "session.ended"
        assert stored["reason"] == "timeout"

    def test_webhook_outcome_type(self, capsys):
        control_plane_emitter.webhook_outcome("debounced", severity=Severity.DEBUG, since_last_ms=120)

        event = json.loads(capsys.readouterr().out.strip())
        assert event["event_type"] == "webhook.debounced"
        assert event["severity"] == "debug"
        assert event["since_last_ms"] == 120


class TestEventStore:
    def _event(self, event_type, owner_id="u1", ts=None):
        return {
            "ts": (ts or datetime.now(timezone.utc)).isoformat(),
            "owner_id": owner_id,
            "session_id": None,
            "component": "control_plane",
            "event_type": event_type,
            "severity": "info",
            "extra": 1,
        }

    def test_query_filters(self):
        store = EventStore()
        store.store(self._event("session.created"))
        store.store(self._event("webhook.accepted"))
        store.store(self._event("webhook.debounced", owner_id="u2"))

        assert len(store.query(owner_id="u1")) == 2
        assert [e["event_type"] for e in store.query(event_type="webhook.*")] == [
            "webhook.accepted",
            "webhook.debounced",
        ]
        assert store.query(event_type="session.created")[0]["extra"] == 1
        assert len(store.query(limit=1)) == 1

    def test_query_since(self):
        store = EventStore()
        old = datetime.now(timezone.utc) - timedelta(minutes=10)
        store.store(self._event("session.created", ts=old))
        store.store(self._event("session.ended"))

        recent = store.query(since=datetime.now(timezone.utc) - timedelta(minutes=1))
        assert [e["event_type"] for e in recent] == ["session.ended"]

    def test_bounded(self):
        store = EventStore(max_events=2)
        for n in range(3):
            store.store(self._event(f"e.{n}"))

        stats = store.get_stats()
        assert stats["total_events"] == 2
        assert [e["event_type"] for e in store.query()] == ["e.1", "e.2"]
