"""
Voice-room provisioning client (Pipecat Cloud).

The service exposes exactly one operation we can use: "start agent session",
which allocates a Daily room and returns its URL and a join token. There is
no end/list/status operation; rooms expire on the provider side.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import aiohttp

from logging_setup import get_logger, Component
from .config import ControlPlaneConfig
from .errors import ConfigurationError, ProvisioningErrorHandler


logger = get_logger(Component.PROVISIONING)


@dataclass(frozen=True)
class ProvisionedRoom:
    """Result of a successful start-agent-session call."""

    room_url: str
    token: str
    provider_session_id: Optional[str] = None
    provider_expires_at: Optional[str] = None


class Provisioner(Protocol):
    """Anything that can start an agent session for an owner."""

    @property
    def is_configured(self) -> bool: ...

    async def start_agent_session(self, owner_id: str) -> ProvisionedRoom: ...


def parse_start_response(data: Dict[str, Any]) -> ProvisionedRoom:
    """
    Map the provider response onto ProvisionedRoom.

    The provider has returned both dailyRoom/dailyToken and room_url/token
    shapes; either is accepted. A response without room or token is a failure.
    """
    room_url = data.get("dailyRoom") or data.get("room_url") or data.get("roomUrl")
    token = data.get("dailyToken") or data.get("token")
    if not isinstance(room_url, str) or not room_url or not isinstance(token, str) or not token:
        raise ValueError("Provisioning response is missing room url or token")
    session_id = data.get("sessionId") or data.get("session_id")
    return ProvisionedRoom(
        room_url=room_url,
        token=token,
        provider_session_id=session_id if isinstance(session_id, str) else None,
        provider_expires_at=data.get("expires_at"),
    )


class PipecatProvisioner:
    """Starts Pipecat Cloud agent sessions over HTTP."""

    def __init__(
        self,
        config: ControlPlaneConfig,
        session_factory=aiohttp.ClientSession,
    ):
        self._config = config
        self._session_factory = session_factory

    @property
    def is_configured(self) -> bool:
        return self._config.is_provisioning_configured

    @property
    def endpoint(self) -> str:
        return f"{self._config.pipecat_api_url}/public/{self._config.pipecat_agent_name}/start"

    async def start_agent_session(self, owner_id: str) -> ProvisionedRoom:
        """
        Start an agent session for owner_id.

        Raises ConfigurationError when no API key is configured and
        ProvisioningFailure for any remote error, bad response or timeout.
        """
        if not self.is_configured:
            raise ConfigurationError("PIPECAT_API_KEY is not configured", owner_id=owner_id)

        start_ts = time.time()
        body = {
            "createDailyRoom": True,
            "metadata": {
                "userId": owner_id,
                "webhookUrl": self._config.webhook_url,
            },
        }
        headers = {
            "Authorization": f"Bearer {self._config.pipecat_api_key}",
            "Content-Type": "application/json",
        }
        logger.info(
            "Requesting agent session",
            endpoint=self.endpoint,
            owner_id=owner_id,
            agent=self._config.pipecat_agent_name,
        )

        status: Optional[int] = None
        try:
            timeout = aiohttp.ClientTimeout(total=self._config.provisioning_timeout_seconds)
            async with self._session_factory(timeout=timeout) as s:
                async with s.post(self.endpoint, json=body, headers=headers) as resp:
                    status = resp.status
                    if not 200 <= resp.status < 300:
                        text = await resp.text()
                        raise RuntimeError(f"Pipecat API error: {resp.status} - {text}")
                    data = await resp.json(content_type=None)
            if not isinstance(data, dict):
                raise ValueError("Provisioning response is not a JSON object")
            room = parse_start_response(data)
        except Exception as e:
            logger.warning(
                "Agent session request failed",
                endpoint=self.endpoint,
                owner_id=owner_id,
                status=status,
                error_type=type(e).__name__,
                latency_ms=int((time.time() - start_ts) * 1000),
            )
            raise ProvisioningErrorHandler.handle_error(owner_id, e, status=status) from e

        logger.info(
            "Agent session started",
            owner_id=owner_id,
            room_url=room.room_url,
            latency_ms=int((time.time() - start_ts) * 1000),
        )
        return room

