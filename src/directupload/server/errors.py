"""Error taxonomy of the upload request handler."""

from enum import Enum


class UploadErrorType(str, Enum):
    """Stable ``error.type`` values sent to clients."""

    INVALID_REQUEST = "invalid_request"
    TOO_MANY_FILES = "too_many_files"
    FILE_TOO_LARGE = "file_too_large"
    INVALID_FILE_TYPE = "invalid_file_type"
    REJECTED = "rejected"
    INVALID_METADATA = "invalid_metadata"


class UploadError(Exception):
    """A policy violation, turned into a structured 4xx response."""

    def __init__(self, type: UploadErrorType, message: str, status_code: int = 400):
        super().__init__(message)
        self.type = type
        self.message = message
        self.status_code = status_code

    def to_body(self) -> dict:
        return {"error": {"type": self.type.value, "message": self.message}}


class RejectUpload(Exception):
    """Raise from ``on_before_upload`` to reject the upload.

    The message is sent to the client with error type ``rejected``.
    """

    def __init__(self, message: str = "Upload rejected."):
        super().__init__(message)
        self.message = message
