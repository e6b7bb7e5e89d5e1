"""
Provisioning error handling.

Maps provisioning errors to stable categories without crashing. The error
classes themselves live in protocol.errors and are re-exported here for
control plane callers.
"""
from typing import Optional

from protocol.errors import (  # noqa: F401
    ConfigurationError,
    MalformedEvent,
    ProvisioningFailure,
    SessionNotFound,
    TransportFailure,
    VoiceSessionError,
)
from logging_setup import get_logger, Component
from .events import control_plane_emitter


logger = get_logger(Component.ERROR_HANDLER)


class ProvisioningErrorCategory:
    """Stable provisioning error categories."""

    AUTH_FAILED = "provider.auth_failed"
    MISCONFIGURED = "provider.misconfigured"
    NETWORK_ERROR = "provider.network_error"
    RATE_LIMITED = "provider.rate_limited"
    CAPACITY_LIMITED = "provider.capacity_limited"
    UNKNOWN_ERROR = "provider.unknown_error"


class ProvisioningErrorHandler:
    """Classifies provisioning errors and emits provider events."""

    @staticmethod
    def classify_error(error: Exception, status: Optional[int] = None) -> str:
        """
        Classify a provisioning error into a stable category.
        HTTP status wins over message heuristics when known.
        """
        if status is not None:
            if status in (401, 403):
                return ProvisioningErrorCategory.AUTH_FAILED
            if status == 404:
                return ProvisioningErrorCategory.MISCONFIGURED
            if status == 429:
                return ProvisioningErrorCategory.RATE_LIMITED
            if status in (502, 503, 504):
                return ProvisioningErrorCategory.CAPACITY_LIMITED

        error_str = str(error).lower()

        if "auth" in error_str or "unauthorized" in error_str or "401" in error_str:
            return ProvisioningErrorCategory.AUTH_FAILED

        if "rate limit" in error_str or "429" in error_str or "throttle" in error_str:
            return ProvisioningErrorCategory.RATE_LIMITED

        if "capacity" in error_str or "503" in error_str:
            return ProvisioningErrorCategory.CAPACITY_LIMITED

        if (
            "network" in error_str
            or "timeout" in error_str
            or "connect" in error_str
            or isinstance(error, (TimeoutError, ConnectionError))
        ):
            return ProvisioningErrorCategory.NETWORK_ERROR

        if "not found" in error_str or "misconfigured" in error_str:
            return ProvisioningErrorCategory.MISCONFIGURED

        return ProvisioningErrorCategory.UNKNOWN_ERROR

    @staticmethod
    def redact(detail: str) -> str:
        """Drop details that may echo credentials back into logs."""
        lowered = detail.lower()
        if any(word in lowered for word in ("secret", "bearer", "key", "token", "password")):
            return "[redacted: potential secret]"
        return detail

    @staticmethod
    def handle_error(
        owner_id: str,
        error: Exception,
        status: Optional[int] = None,
    ) -> ProvisioningFailure:
        """
        Turn any provisioning exception into a ProvisioningFailure.
        Emits a provider.event; never raises itself.
        """
        category = ProvisioningErrorHandler.classify_error(error, status)
        detail = ProvisioningErrorHandler.redact(str(error))

        logger.error(
            "Provisioning error",
            owner_id=owner_id,
            category=category,
            status=status,
            error_type=type(error).__name__,
            detail=detail,
        )

        control_plane_emitter.provider_event(
            owner_id=owner_id,
            category=category,
            status=status,
            detail=detail,
        )

        return ProvisioningFailure(
            f"Voice session provisioning failed ({category})",
            owner_id=owner_id,
            category=category,
            status=status,
        )
