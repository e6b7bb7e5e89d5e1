"""
Voice client -> control plane HTTP client.

Session create is the only call whose failure stops the client; ending and
muting are best-effort and only logged when they fail.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import aiohttp

from logging_setup import get_logger, Component
from protocol.errors import ConfigurationError, ProvisioningFailure
from .config import ClientConfig, get_config


logger = get_logger(Component.VOICE_CLIENT)


@dataclass(frozen=True)
class VoiceSession:
    """Join details handed out by the control plane."""

    session_id: str
    room_url: str
    token: str
    expires_at: int
    remaining_time: int

    @classmethod
    def from_response(cls, data: Dict[str, Any]) -> "VoiceSession":
        return cls(
            session_id=data["sessionId"],
            room_url=data["roomUrl"],
            token=data["token"],
            expires_at=int(data.get("expiresAt", 0)),
            remaining_time=int(data.get("remainingTime", 0)),
        )


class BackendClient:
    """Thin aiohttp wrapper around the voice session API."""

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        session_factory: Callable[..., aiohttp.ClientSession] = aiohttp.ClientSession,
    ):
        self.config = config or get_config()
        self._session_factory = session_factory

    def _timeout(self) -> aiohttp.ClientTimeout:
        return aiohttp.ClientTimeout(total=self.config.request_timeout_seconds)

    async def create_session(self, owner_id: str) -> VoiceSession:
        """
        Ask the control plane for a room. Raises on any failure.

        503 means the server has no provisioning credential and maps to
        ConfigurationError; every other failure is a ProvisioningFailure.
        """
        endpoint = f"{self.config.api_url}/api/voice/session"
        start_ts = time.time()
        logger.info("Requesting voice session", endpoint=endpoint, owner_id=owner_id)

        try:
            async with self._session_factory() as s:
                async with s.post(endpoint, json={"userId": owner_id}, timeout=self._timeout()) as resp:
                    status = resp.status
                    data = await resp.json(content_type=None) if 200 <= status < 300 else None
        except Exception as e:
            logger.error(
                "Voice session request failed",
                endpoint=endpoint,
                owner_id=owner_id,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=int((time.time() - start_ts) * 1000),
            )
            raise ProvisioningFailure(
                "Could not reach voice session API",
                owner_id=owner_id,
                category="provider.network_error",
            ) from e

        logger.info(
            "Voice session response",
            endpoint=endpoint,
            owner_id=owner_id,
            status=status,
            latency_ms=int((time.time() - start_ts) * 1000),
        )

        if status == 503:
            raise ConfigurationError("Voice sessions are not configured on the server", owner_id=owner_id)
        if data is None:
            raise ProvisioningFailure(
                f"Voice session API returned {status}",
                owner_id=owner_id,
                status=status,
            )
        try:
            return VoiceSession.from_response(data)
        except (KeyError, TypeError, ValueError) as e:
            raise ProvisioningFailure(
                "Voice session API returned an incomplete response",
                owner_id=owner_id,
                status=status,
            ) from e

    async def end_session(self, session_id: str) -> bool:
        """
        Best-effort end. A 404 counts as success: the session is already gone.

        Returns True if the session is known to be ended, False otherwise.
        """
        endpoint = f"{self.config.api_url}/api/voice/session/{session_id}"
        try:
            async with self._session_factory() as s:
                async with s.delete(endpoint, timeout=self._timeout()) as resp:
                    ok = 200 <= resp.status < 300 or resp.status == 404
                    logger.info(
                        "End session response",
                        session_id=session_id,
                        status=resp.status,
                        ok=ok,
                    )
                    return ok
        except Exception as e:
            logger.warning(
                "End session request failed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def set_muted(self, session_id: str, muted: bool) -> bool:
        endpoint = f"{self.config.api_url}/api/voice/mute"
        try:
            async with self._session_factory() as s:
                async with s.post(
                    endpoint,
                    json={"sessionId": session_id, "isMuted": muted},
                    timeout=self._timeout(),
                ) as resp:
                    ok = 200 <= resp.status < 300
                    if not ok:
                        logger.warning("Mute request rejected", session_id=session_id, status=resp.status)
                    return ok
        except Exception as e:
            logger.warning(
                "Mute request failed",
                session_id=session_id,
                muted=muted,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

    async def session_status(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Server view of the session, or None when it cannot be read."""
        endpoint = f"{self.config.api_url}/api/voice/session/{session_id}/status"
        try:
            async with self._session_factory() as s:
                async with s.get(endpoint, timeout=self._timeout()) as resp:
                    if 200 <= resp.status < 300:
                        return await resp.json(content_type=None)
                    logger.warning("Status request rejected", session_id=session_id, status=resp.status)
        except Exception as e:
            logger.warning(
                "Status request failed",
                session_id=session_id,
                error=str(e),
                error_type=type(e).__name__,
            )
        return None
