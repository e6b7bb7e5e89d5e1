"""
Voice client configuration.

Loads backend URLs and client-side timing from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Optional


def _parse_float_env(key: str, default: float) -> float:
    """
    Parse a numeric environment variable, stripping comments and whitespace.

    Handles cases like:
    - "600  # comment" -> 600.0
    - "3" -> 3.0
    - None -> default
    """
    value = os.environ.get(key)
    if not value:
        return default

    if "#" in value:
        value = value.split("#")[0]

    value = value.strip()
    if not value:
        return default

    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class ClientConfig:
    """Voice client configuration."""

    api_url: str = "http://localhost:3051"
    ws_url: str = "ws://localhost:3051/ws"

    # Local countdown; mirrors the server-side session TTL
    session_ttl_seconds: int = 600
    countdown_warning_seconds: int = 60

    # Error state shows for this long before returning to off
    error_reset_seconds: float = 3.0

    # Pause between leaving the room and ending the backend session so
    # in-flight webhooks can land
    disconnect_settle_seconds: float = 0.5

    # Broadcast listener reconnect delay
    reconnect_seconds: float = 3.0

    request_timeout_seconds: float = 10.0

    @classmethod
    def from_env(cls) -> "ClientConfig":
        """Load configuration from environment variables."""
        api_url = os.environ.get("VOICE_API_URL", "http://localhost:3051").rstrip("/")
        default_ws = api_url.replace("https://", "wss://").replace("http://", "ws://") + "/ws"
        return cls(
            api_url=api_url,
            ws_url=os.environ.get("VOICE_WS_URL", default_ws),
            session_ttl_seconds=int(_parse_float_env("SESSION_TTL_SECONDS", 600)),
            countdown_warning_seconds=int(_parse_float_env("VOICE_COUNTDOWN_WARNING_SECONDS", 60)),
            error_reset_seconds=_parse_float_env("VOICE_ERROR_RESET_SECONDS", 3.0),
            disconnect_settle_seconds=_parse_float_env("VOICE_DISCONNECT_SETTLE_SECONDS", 0.5),
            reconnect_seconds=_parse_float_env("VOICE_RECONNECT_SECONDS", 3.0),
            request_timeout_seconds=_parse_float_env("VOICE_REQUEST_TIMEOUT_SECONDS", 10.0),
        )


def get_config() -> ClientConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = ClientConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[ClientConfig] = None
