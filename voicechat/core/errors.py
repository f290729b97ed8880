"""Error taxonomy shared by services and API routes."""
from typing import Any, Dict, Optional


class VoiceChatError(Exception):
    """Base error carrying the HTTP status and diagnostic details."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Any = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        """Render as the ``{error, details}`` response body."""
        body: Dict[str, Any] = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ConfigurationError(VoiceChatError):
    """Credentials or settings are missing; no upstream call was attempted."""

    status_code = 500


class ValidationError(VoiceChatError):
    """Required request fields are missing or malformed."""

    status_code = 400


class UpstreamError(VoiceChatError):
    """The vendor API answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int, details: Any = None):
        super().__init__(message, details=details, status_code=status_code)


class TransportError(VoiceChatError):
    """Network failure or an unparseable upstream response."""

    status_code = 500


class MediaError(VoiceChatError):
    """Local microphone or audio track could not be acquired."""

    status_code = 500


class IllegalTransitionError(VoiceChatError):
    """A call session method was invoked from a state that does not allow it."""

    status_code = 409
