"""
Webhook ingestion for voice agent events.

The agent posts out-of-band events (a numeric answer, the raw transcript and
opaque metadata) while the user talks. The gate decides what happens to each
post, in this order:

1. unusable body             -> malformed (dropped)
2. transcript says "goodbye" -> termination broadcast now, end all sessions
                                after a grace delay (skips debounce)
3. owning session is muted   -> muted (dropped)
4. no number and no text     -> malformed (dropped)
5. inside the debounce window-> debounced (dropped, window unchanged)
6. otherwise                 -> accepted: normalize and broadcast

The debounce window is global, not per session: the UI assumes a single
active speaker.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from logging_setup import get_logger, Component
from observability.events import Severity
from protocol.messages import BroadcastMessage, TerminationReason
from .broadcast import BroadcastHub
from .errors import MalformedEvent
from .events import control_plane_emitter
from .number_parser import normalize_answer
from .session import EndReason, SessionManager


logger = get_logger(Component.WEBHOOK_GATE)

DEFAULT_DEBOUNCE_MS = 900.0
DEFAULT_GOODBYE_GRACE_SECONDS = 2.0
FAREWELL_PHRASE = "goodbye"


class EventOutcome(str, Enum):
    ACCEPTED = "accepted"
    DEBOUNCED = "debounced"
    MUTED = "muted"
    TERMINATION = "termination"
    MALFORMED = "malformed"


@dataclass
class InboundEvent:
    """One agent post after best-effort parsing. Never stored."""

    number: Optional[int] = None
    transcription: Optional[str] = None
    timestamp: Optional[str] = None
    last_question: Optional[str] = None
    session_id: Optional[str] = None
    user_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    received_at: float = 0.0

    @property
    def is_farewell(self) -> bool:
        return bool(self.transcription) and FAREWELL_PHRASE in self.transcription.lower()

    @property
    def has_content(self) -> bool:
        return self.number is not None or bool(self.transcription)


def _coerce_number(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def parse_inbound_event(raw: Any, received_at: float) -> InboundEvent:
    """
    Best-effort parse of a raw webhook body.

    Fields with the wrong type are treated as absent. Raises MalformedEvent
    only when the body is not a JSON object at all.
    """
    if not isinstance(raw, dict):
        raise MalformedEvent(f"Webhook body must be an object, got {type(raw).__name__}")

    metadata = raw.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    return InboundEvent(
        number=_coerce_number(raw.get("number")),
        transcription=_optional_str(raw.get("transcription")),
        timestamp=_optional_str(raw.get("timestamp")),
        last_question=_optional_str(raw.get("last_question")),
        session_id=_optional_str(metadata.get("session_id")) or _optional_str(raw.get("session_id")),
        user_id=_optional_str(metadata.get("userId")) or _optional_str(raw.get("userId")),
        metadata=metadata,
        received_at=received_at,
    )


class WebhookGate:
    """Debounces, filters and normalizes agent events before broadcasting."""

    def __init__(
        self,
        manager: SessionManager,
        hub: BroadcastHub,
        *,
        debounce_ms: float = DEFAULT_DEBOUNCE_MS,
        goodbye_grace_seconds: float = DEFAULT_GOODBYE_GRACE_SECONDS,
        now: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.manager = manager
        self.hub = hub
        self.debounce_ms = debounce_ms
        self.goodbye_grace_seconds = goodbye_grace_seconds
        self._now = now
        self._sleep = sleep
        self.last_accepted_at: Optional[float] = None
        self._cascade_tasks: set[asyncio.Task] = set()

    def accept_event(self, raw: Any) -> EventOutcome:
        """Evaluate one inbound post. Never raises for bad input."""
        now = self._now()
        try:
            event = parse_inbound_event(raw, received_at=now)
        except MalformedEvent as e:
            control_plane_emitter.webhook_outcome(
                EventOutcome.MALFORMED.value, severity=Severity.WARN, detail=e.message
            )
            return EventOutcome.MALFORMED

        if event.is_farewell:
            self._start_termination_cascade(event)
            return EventOutcome.TERMINATION

        owner_id = self._resolve_owner(event)
        if owner_id is not None and self.manager.is_muted(owner_id):
            logger.info("Ignoring webhook from muted session", owner_id=owner_id)
            control_plane_emitter.webhook_outcome(
                EventOutcome.MUTED.value, owner_id=owner_id, session_id=event.session_id
            )
            return EventOutcome.MUTED

        if not event.has_content:
            control_plane_emitter.webhook_outcome(
                EventOutcome.MALFORMED.value,
                owner_id=owner_id,
                session_id=event.session_id,
                severity=Severity.WARN,
                detail="missing number and transcription",
            )
            return EventOutcome.MALFORMED

        if self.last_accepted_at is not None:
            elapsed_ms = (now - self.last_accepted_at) * 1000
            if elapsed_ms < self.debounce_ms:
                logger.info("Ignoring webhook (debounced)", since_last_ms=int(elapsed_ms))
                control_plane_emitter.webhook_outcome(
                    EventOutcome.DEBOUNCED.value,
                    owner_id=owner_id,
                    session_id=event.session_id,
                    severity=Severity.DEBUG,
                    since_last_ms=int(elapsed_ms),
                )
                return EventOutcome.DEBOUNCED

        self.last_accepted_at = now

        answer = normalize_answer(event.number, event.transcription)
        if answer != event.number:
            logger.info(
                "Corrected number from transcription",
                number=event.number,
                answer=answer,
            )

        message = BroadcastMessage.data_event(
            answer=answer,
            transcription=event.transcription,
            original_timestamp=event.timestamp,
            last_question=event.last_question,
        )
        recipients = self.hub.broadcast(message)
        control_plane_emitter.webhook_outcome(
            EventOutcome.ACCEPTED.value,
            owner_id=owner_id,
            session_id=event.session_id,
            answer=answer,
            corrected=answer != event.number,
            recipients=recipients,
        )
        return EventOutcome.ACCEPTED

    def _resolve_owner(self, event: InboundEvent) -> Optional[str]:
        if event.session_id:
            owner_id = self.manager.owner_for(event.session_id)
            if owner_id is not None:
                return owner_id
        if event.user_id and self.manager.get_session(event.user_id) is not None:
            return event.user_id
        return None

    def _start_termination_cascade(self, event: InboundEvent) -> None:
        """
        Broadcast a termination signal now and end every session after the
        grace delay, letting an in-flight spoken farewell finish.

        All sessions are ended because the post may not carry a usable
        session id.
        """
        logger.info("Goodbye detected in transcription", session_id=event.session_id, user_id=event.user_id)
        message = BroadcastMessage.termination(
            TerminationReason.USER_GOODBYE,
            session_id=event.session_id,
            user_id=event.user_id,
        )
        recipients = self.hub.broadcast(message)
        control_plane_emitter.webhook_outcome(
            "goodbye_detected", owner_id=event.user_id, session_id=event.session_id
        )
        control_plane_emitter.termination_broadcast(
            TerminationReason.USER_GOODBYE.value,
            recipients,
            owner_id=event.user_id,
            session_id=event.session_id,
        )

        async def _cascade():
            await self._sleep(self.goodbye_grace_seconds)
            logger.info("Ending all active voice sessions after goodbye")
            self.manager.shutdown_all(EndReason.USER_GOODBYE)

        task = asyncio.get_running_loop().create_task(_cascade())
        self._cascade_tasks.add(task)
        task.add_done_callback(self._cascade_tasks.discard)

    def cancel_pending(self) -> None:
        """Cancel scheduled cascades (application shutdown ends sessions anyway)."""
        for task in list(self._cascade_tasks):
            task.cancel()
