"""Error taxonomy shared by the control plane and the voice client."""

from typing import Optional


class VoiceSessionError(Exception):
    """Base class for voice session errors with a stable code."""

    code = "voice.error"

    def __init__(self, message: str, owner_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.owner_id = owner_id


class ConfigurationError(VoiceSessionError):
    """Provisioning credential missing. Fatal to the feature, never retried."""

    code = "config.missing_credential"


class ProvisioningFailure(VoiceSessionError):
    """The provisioning service failed or timed out. Not retried."""

    code = "provider.failure"

    def __init__(
        self,
        message: str,
        owner_id: Optional[str] = None,
        category: str = "provider.unknown_error",
        status: Optional[int] = None,
    ):
        super().__init__(message, owner_id=owner_id)
        self.category = category
        self.status = status


class SessionNotFound(VoiceSessionError):
    """Ending or querying an absent session. Benign."""

    code = "session.not_found"


class TransportFailure(VoiceSessionError):
    """Local transport join/leave failed. Logged; teardown continues."""

    code = "transport.failure"


class MalformedEvent(VoiceSessionError):
    """Inbound webhook body could not be used. Dropped silently."""

    code = "webhook.malformed"
