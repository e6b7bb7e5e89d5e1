"""
Control plane audit events.
Thin helpers over the shared EventEmitter so event names stay in one place.
"""
from typing import Optional

from observability.events import Component, EventEmitter, Severity


class ControlPlaneEmitter(EventEmitter):
    """Emits control plane audit events."""

    def __init__(self):
        super().__init__(Component.CONTROL_PLANE)

    def session_created(
        self,
        owner_id: str,
        session_id: str,
        room_url: Optional[str],
        ttl_seconds: float,
    ) -> None:
        self.emit(
            "session.created",
            owner_id=owner_id,
            session_id=session_id,
            room_url=room_url,
            ttl_seconds=ttl_seconds,
        )

    def session_ended(self, owner_id: str, session_id: str, reason: str) -> None:
        self.emit(
            "session.ended",
            owner_id=owner_id,
            session_id=session_id,
            reason=reason,
        )

    def session_muted(self, owner_id: str, session_id: str, muted: bool) -> None:
        self.emit(
            "session.mute_changed",
            owner_id=owner_id,
            session_id=session_id,
            muted=muted,
        )

    def webhook_outcome(
        self,
        outcome: str,
        owner_id: Optional[str] = None,
        session_id: Optional[str] = None,
        severity: Severity = Severity.INFO,
        **kwargs,
    ) -> None:
        """Emit webhook.<outcome> (accepted, debounced, muted, goodbye_detected, malformed)."""
        self.emit(
            f"webhook.{outcome}",
            owner_id=owner_id,
            session_id=session_id,
            severity=severity,
            **kwargs,
        )

    def termination_broadcast(
        self,
        reason: str,
        recipients: int,
        owner_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.emit(
            "broadcast.termination",
            owner_id=owner_id,
            session_id=session_id,
            reason=reason,
            recipients=recipients,
        )

    def provider_event(
        self,
        owner_id: str,
        category: str,
        status: Optional[int] = None,
        detail: Optional[str] = None,
    ) -> None:
        """Emit provider.event for provisioning errors and limits."""
        self.emit(
            "provider.event",
            owner_id=owner_id,
            severity=Severity.WARN if "error" in category or "limited" in category else Severity.ERROR,
            category=category,
            status=status,
            detail=detail,
        )


# Global event emitter for control plane
control_plane_emitter = ControlPlaneEmitter()
