"""
Real-time audio transport interface.

The controller only talks to the room through this protocol, so the concrete
WebRTC SDK can be swapped (or faked in tests).
"""

from __future__ import annotations

from typing import Any, Callable, Protocol


TransportHandler = Callable[[Any], Any]


class TransportEvent:
    """Event names a transport emits."""

    JOINED = "joined"
    LEFT = "left"
    ERROR = "error"
    PARTICIPANT_UPDATED = "participant-updated"
    NETWORK_QUALITY_CHANGED = "network-quality-changed"
    PARTICIPANT_LEFT = "participant-left"


class Transport(Protocol):
    async def join(self, url: str, token: str) -> None: ...

    async def leave(self) -> None: ...

    def set_local_audio_enabled(self, enabled: bool) -> None: ...

    def on(self, event: str, handler: TransportHandler) -> None: ...

    def off(self, event: str, handler: TransportHandler) -> None: ...
