"""
Shared logging infrastructure for the voice session control plane.

Used by both the backend (control_plane) and the client controller
(voice_client) so that every log line is a single JSON object that can be
correlated by owner and session id.

Features:
- JSON-formatted structured logs
- Configurable log levels
- Owner / session correlation fields
- Component tagging
- Keyword-argument fields instead of format strings
"""

import json
import logging
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class Severity(str, Enum):
    """Log severity levels."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Component(str, Enum):
    """System components for log tagging."""
    CONTROL_PLANE = "control_plane"
    WEBHOOK_SERVER = "webhook_server"
    SESSION_MANAGER = "session_manager"
    WEBHOOK_GATE = "webhook_gate"
    BROADCAST_HUB = "broadcast_hub"
    PROVISIONING = "provisioning"
    ERROR_HANDLER = "error_handler"
    VOICE_CLIENT = "voice_client"
    CLIENT_CONSUMER = "client_consumer"


# LogRecord attributes that are never copied into the JSON body
_RESERVED_ATTRS = frozenset({
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", "component", "session_id", "owner_id", "message",
})

# Fields whose values are credentials (room join tokens, provider keys)
_SENSITIVE_FIELDS = frozenset({"token", "api_key", "authorization", "pipecat_api_key"})
REDACTED = "[redacted]"


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Every record becomes one JSON line with:
    - ISO8601 timestamp
    - severity
    - component
    - owner_id / session_id when the logger is bound to a session
    - message and any extra keyword fields (credential fields are masked)
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "severity": record.levelname.lower(),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }

        if hasattr(record, "owner_id"):
            log_data["owner_id"] = record.owner_id
        if hasattr(record, "session_id"):
            log_data["session_id"] = record.session_id

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            log_data[key] = REDACTED if key.lower() in _SENSITIVE_FIELDS else value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    Wrapper around Python's logging with structured JSON output.

    Usage:
        logger = StructuredLogger("session_manager", owner_id="user-1")
        logger.info("Session created", room_url="https://...")
        logger.error("Provisioning failed", error="details")
    """

    def __init__(
        self,
        component: str | Component,
        owner_id: Optional[str] = None,
        session_id: Optional[str] = None,
        logger_name: Optional[str] = None
    ):
        self.component = component.value if isinstance(component, Component) else component
        self.owner_id = owner_id
        self.session_id = session_id
        self.logger = logging.getLogger(logger_name or self.component)

    def _log(self, level: int, message: str, **kwargs):
        """Internal logging method with structured data."""
        exc_info = kwargs.pop("exc_info", None)
        stack_info = kwargs.pop("stack_info", None)
        stacklevel = kwargs.pop("stacklevel", 1)

        extra = {
            "component": self.component,
            **kwargs
        }

        if self.owner_id:
            extra["owner_id"] = self.owner_id
        if self.session_id:
            extra["session_id"] = self.session_id

        self.logger.log(
            level,
            message,
            exc_info=exc_info,
            stack_info=stack_info,
            stacklevel=stacklevel,
            extra=extra
        )

    def debug(self, message: str, **kwargs):
        """Log a debug message."""
        self._log(logging.DEBUG, message, **kwargs)

    def info(self, message: str, **kwargs):
        """Log an info message."""
        self._log(logging.INFO, message, **kwargs)

    def warning(self, message: str, **kwargs):
        """Log a warning message."""
        self._log(logging.WARNING, message, **kwargs)

    def error(self, message: str, **kwargs):
        """Log an error message."""
        self._log(logging.ERROR, message, **kwargs)

    def critical(self, message: str, **kwargs):
        """Log a critical message."""
        self._log(logging.CRITICAL, message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log an error message with exception info (mirrors logging.Logger.exception)."""
        kwargs.setdefault("exc_info", True)
        self._log(logging.ERROR, message, **kwargs)

    def with_session(
        self,
        owner_id: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> "StructuredLogger":
        """Create a new logger bound to an owner and/or external session id."""
        return StructuredLogger(
            self.component,
            owner_id=owner_id or self.owner_id,
            session_id=session_id or self.session_id,
            logger_name=self.logger.name
        )


def setup_logging(
    level: str = "INFO",
    use_json: bool = True,
    include_timestamp: bool = True
) -> None:
    """
    Configure root logger for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        use_json: Use JSON formatter (True) or simple text (False)
        include_timestamp: Include timestamps in text logs

    This should be called once at application startup.
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)

    if use_json:
        formatter = JSONFormatter()
    else:
        format_str = "%(levelname)s - %(component)s - %(message)s"
        if include_timestamp:
            format_str = "%(asctime)s - " + format_str
        formatter = logging.Formatter(format_str, defaults={"component": "unknown"})

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    log_level = getattr(logging, level.upper(), logging.INFO)
    root_logger.setLevel(log_level)


def get_logger(
    component: str | Component,
    owner_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> StructuredLogger:
    """
    Get a structured logger for a component.

    Example:
        logger = get_logger(Component.SESSION_MANAGER, owner_id="user-1")
        logger.info("Session started")
    """
    return StructuredLogger(component, owner_id=owner_id, session_id=session_id)
