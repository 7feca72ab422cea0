"""Custom exceptions for the storage layer."""


class StorageException(Exception):
    """Base exception for storage operations."""
    pass


class StorageConfigError(StorageException):
    """Exception raised when a storage client cannot be configured."""
    pass


class S3Error(StorageException):
    """Exception raised when the S3 API answers with an error response."""

    def __init__(self, message: str, code: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
