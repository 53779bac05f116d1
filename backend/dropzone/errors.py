"""Error kinds raised by the share pipelines.

Each error carries the HTTP status it maps to; the handlers in
``dropzone.main`` turn them into JSON (``/api/*``) or plain-text responses.
"""


class ShareError(Exception):
    """Base class for errors that surface to the client."""

    status_code = 500
    default_message = "Server Error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(ShareError):
    """Unknown share or batch identifier."""
    status_code = 404
    default_message = "File not found"


class ExpiredError(ShareError):
    """The record existed but is past its expiry time."""
    status_code = 410
    default_message = "File has expired"


class ForbiddenError(ShareError):
    """Missing or incorrect password / view token."""
    status_code = 403
    default_message = "Protected Content"


class ValidationError(ShareError):
    status_code = 400
    default_message = "Invalid request"


class PayloadTooLargeError(ValidationError):
    status_code = 413
    default_message = "Upload exceeds the maximum allowed size"


class StorageError(ShareError):
    """Blob or metadata I/O failed."""
    status_code = 500
    default_message = "Upload failed"


class ConfigError(Exception):
    """Raised at startup for a malformed master key when STRICT_KEY is set."""
    pass
