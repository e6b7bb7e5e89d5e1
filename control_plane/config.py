"""
Configuration management for the Control Plane.

Sources, lowest to highest precedence:
1. Built-in defaults
2. Optional YAML file config/<APP_ENV>.yml
3. Environment variables (.env_local / .env are loaded first, never overriding)

A missing provisioning key does not fail startup: it is reported as a
configuration error in the log and on /health, and every session attempt is
refused with ConfigurationError until it is set.
"""
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

ROOT_DIR = Path(__file__).parent.parent
DEFAULT_API_URL = "https://api.pipecat.daily.co/v1"
DEFAULT_AGENT_NAME = "my-first-agent"


def _load_env_files() -> None:
    for name in (".env_local", ".env"):
        p = ROOT_DIR / name
        if p.exists():
            load_dotenv(p, override=False)


def _load_yaml_overlay(app_env: str, config_dir: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load config/<app_env>.yml (or .yaml). Returns {} when absent or not a mapping.
    """
    directory = config_dir or (ROOT_DIR / "config")
    for suffix in (".yml", ".yaml"):
        path = directory / f"{app_env}{suffix}"
        if path.exists():
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
            return data if isinstance(data, dict) else {}
    return {}


def _section(data: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = data.get(name)
    return value if isinstance(value, dict) else {}


def _env_number(key: str, default: float) -> float:
    """
    Parse a numeric env var, tolerating trailing comments ("600  # ten minutes").
    """
    value = os.environ.get(key)
    if not value:
        return default
    value = value.split("#")[0].strip()
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        return default


@dataclass
class ControlPlaneConfig:
    """Control Plane configuration."""

    # Pipecat Cloud (voice-room provisioning)
    pipecat_api_key: Optional[str]
    pipecat_agent_name: str = DEFAULT_AGENT_NAME
    pipecat_api_url: str = DEFAULT_API_URL
    webhook_url: str = ""
    provisioning_timeout_seconds: float = 15.0

    # Session lifecycle
    session_ttl_seconds: float = 600.0

    # Webhook gate
    debounce_ms: float = 900.0
    goodbye_grace_seconds: float = 2.0

    # Server
    port: int = 3051
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"
    app_env: str = "development"

    @property
    def is_provisioning_configured(self) -> bool:
        return bool(self.pipecat_api_key)

    @classmethod
    def from_env(cls, config_dir: Optional[Path] = None) -> "ControlPlaneConfig":
        """Load configuration from env vars layered over the optional YAML file."""
        _load_env_files()
        app_env = os.environ.get("APP_ENV", "development")
        overlay = _load_yaml_overlay(app_env, config_dir)
        pipecat = _section(overlay, "pipecat")
        session = _section(overlay, "session")
        webhook = _section(overlay, "webhook")
        server = _section(overlay, "server")

        port = int(_env_number("PORT", server.get("port", 3051)))
        cors_raw = os.environ.get("CORS_ORIGIN") or server.get("cors_origin", "http://localhost:3000")
        if isinstance(cors_raw, str):
            cors_origins = [o.strip() for o in cors_raw.split(",") if o.strip()]
        else:
            cors_origins = list(cors_raw)

        webhook_url = os.environ.get("WEBHOOK_URL") or pipecat.get("webhook_url") or f"http://localhost:{port}/api/answer"

        return cls(
            pipecat_api_key=os.environ.get("PIPECAT_API_KEY") or pipecat.get("api_key"),
            pipecat_agent_name=os.environ.get("PIPECAT_AGENT_NAME") or pipecat.get("agent_name", DEFAULT_AGENT_NAME),
            pipecat_api_url=(os.environ.get("PIPECAT_API_URL") or pipecat.get("api_url", DEFAULT_API_URL)).rstrip("/"),
            webhook_url=webhook_url,
            provisioning_timeout_seconds=_env_number(
                "PROVISIONING_TIMEOUT_SECONDS", pipecat.get("timeout_seconds", 15.0)
            ),
            session_ttl_seconds=_env_number("SESSION_TTL_SECONDS", session.get("ttl_seconds", 600.0)),
            debounce_ms=_env_number("DEBOUNCE_MS", webhook.get("debounce_ms", 900.0)),
            goodbye_grace_seconds=_env_number("GOODBYE_GRACE_SECONDS", webhook.get("goodbye_grace_seconds", 2.0)),
            port=port,
            cors_origins=cors_origins,
            log_level=os.environ.get("LOG_LEVEL") or server.get("log_level", "INFO"),
            app_env=app_env,
        )


def get_config() -> ControlPlaneConfig:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = ControlPlaneConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[ControlPlaneConfig] = None
