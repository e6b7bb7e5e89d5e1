"""Pydantic models for the broadcast channel (server -> UI connections)."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class MessageType(str, Enum):
    """Message types pushed over the broadcast channel."""

    DATA_EVENT = "data-event"
    TERMINATION_SIGNAL = "termination-signal"


class TerminationReason(str, Enum):
    """Why a termination signal was broadcast."""

    USER_GOODBYE = "user_goodbye"
    TIMEOUT = "timeout"


def utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class BroadcastMessage(BaseModel):
    """
    A normalized event delivered at most once to every open connection.

    No handshake or versioning: the JSON form is exactly
    {"type": ..., "timestamp": ..., "payload": {...}}.
    """

    type: MessageType
    timestamp: str = Field(default_factory=utc_timestamp)
    payload: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_termination(self) -> bool:
        return self.type == MessageType.TERMINATION_SIGNAL

    def to_json(self) -> str:
        return self.model_dump_json()

    @classmethod
    def data_event(
        cls,
        answer: Optional[int],
        transcription: Optional[str],
        original_timestamp: Optional[str] = None,
        last_question: Optional[str] = None,
    ) -> "BroadcastMessage":
        """Build the data-event the UI consumes (camelCase keys on the wire)."""
        return cls(
            type=MessageType.DATA_EVENT,
            payload={
                "answer": answer,
                "transcription": transcription,
                "originalTimestamp": original_timestamp,
                "lastQuestion": last_question,
            },
        )

    @classmethod
    def termination(
        cls,
        reason: TerminationReason,
        session_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> "BroadcastMessage":
        return cls(
            type=MessageType.TERMINATION_SIGNAL,
            payload={
                "reason": reason.value,
                "sessionId": session_id,
                "userId": user_id,
            },
        )
