"""Client-side upload errors."""

from enum import Enum
from typing import Optional


class ClientErrorType(str, Enum):
    """Client-only error types; server error types are passed through as-is."""

    NO_FILES = "no_files"
    S3_UPLOAD = "s3_upload"
    ABORTED = "aborted"
    UNKNOWN = "unknown"


class ClientUploadError(Exception):
    """A request-level upload failure, or the failure recorded on one file.

    ``type`` is a :class:`ClientErrorType` value or the ``error.type`` the
    server answered with (``too_many_files``, ``rejected``, ...).
    """

    def __init__(self, type: str, message: Optional[str] = None):
        super().__init__(message or type)
        self.type = type.value if isinstance(type, ClientErrorType) else type
        self.message = message

    def __repr__(self) -> str:
        return f"ClientUploadError(type={self.type!r}, message={self.message!r})"


class UploadAborted(Exception):
    """The abort signal fired while an operation was waiting or in flight."""

    def __init__(self, message: str = "Upload aborted."):
        super().__init__(message)


class InvalidTransition(Exception):
    """A file upload was moved to a state it cannot reach from its current one."""
