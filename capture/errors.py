"""
Error taxonomy for the capture pipeline.

Apply/confirm errors are terminal for a template. Detection failures only
escape from legacy step lists. Encoding and raw-video problems are caught at
the postprocess boundary and logged.
"""
from typing import Optional


class CaptureError(Exception):
    """Base class for capture pipeline errors."""


class TransportError(CaptureError):
    """Non-2xx response from the display server."""

    def __init__(self, status: int, body: str = "", url: Optional[str] = None):
        self.status = status
        self.body = body
        self.url = url
        super().__init__(f"HTTP {status} {body}".strip())


class ConfirmationTimeoutError(CaptureError):
    """The page title never reflected the applied template."""

    def __init__(self, template_id: str, attempts: int, last_message: str = ""):
        self.template_id = template_id
        self.attempts = attempts
        self.last_message = last_message
        super().__init__(
            f"Failed to apply template '{template_id}' after {attempts} attempts: "
            f"{last_message or 'unknown error'}"
        )


class DetectionFailure(CaptureError):
    """A readiness strategy could not evaluate the page."""


class EncodingUnavailable(CaptureError):
    """The transcoder is missing or exited non-zero."""

    def __init__(self, message: str, exit_code: Optional[int] = None, missing: bool = False):
        self.exit_code = exit_code
        self.missing = missing
        super().__init__(message)


class IOWarning(CaptureError):
    """The raw recording could not be resolved or moved."""


class ProfileError(CaptureError):
    """A capture profile file is malformed."""


class GalleryError(CaptureError):
    """Gallery generation has nothing to show."""
