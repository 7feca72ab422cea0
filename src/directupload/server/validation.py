"""File policy checks and object key helpers."""

import re
import unicodedata
from typing import Iterable
from uuid import uuid4

from directupload.core.constants import S3_SINGLE_PART_LIMIT
from directupload.models.upload import FileDescriptor
from directupload.server.errors import UploadError, UploadErrorType
from directupload.server.route import Route


def is_file_type_allowed(file_type: str, allowed: Iterable[str]) -> bool:
    """Match a MIME type against exact entries and ``type/*`` wildcards.

    An empty ``allowed`` list accepts every type.
    """
    allowed = list(allowed)
    if not allowed:
        return True

    file_type = file_type.lower()
    for pattern in allowed:
        pattern = pattern.lower()
        if pattern.endswith("/*"):
            if file_type.startswith(pattern[:-1]):
                return True
        elif file_type == pattern:
            return True
    return False


def create_slug(name: str) -> str:
    """Make a file name safe for use in an object key."""
    slug = unicodedata.normalize("NFKD", name).encode("ascii", "ignore").decode("ascii")
    slug = slug.replace("../", "").replace("..\\", "").lower()
    slug = re.sub(r"[^a-z0-9._-]+", "-", slug)
    slug = re.sub(r"-*\.-*", ".", slug)
    slug = re.sub(r"-{2,}", "-", slug).strip("-.")
    return slug[:200] or "file"


def default_object_key(name: str) -> str:
    """Random, collision-resistant key ending in the slugified file name."""
    return f"{uuid4()}-{create_slug(name)}"


def validate_files(files: list[FileDescriptor], route: Route) -> None:
    """Check a request's files against the route policy.

    Raises:
        UploadError: On the first violation found
    """
    if not route.multiple_files and len(files) > 1:
        raise UploadError(UploadErrorType.TOO_MANY_FILES, "Multiple files are not allowed.")
    if len(files) > route.max_files:
        raise UploadError(UploadErrorType.TOO_MANY_FILES, "Too many files.")

    for file in files:
        if route.multipart is None and file.size > S3_SINGLE_PART_LIMIT:
            raise UploadError(
                UploadErrorType.FILE_TOO_LARGE,
                "One or more files exceed the S3 limit of 5GB. "
                "Use multipart upload for larger files.",
            )
        if file.size > route.max_file_size:
            raise UploadError(UploadErrorType.FILE_TOO_LARGE, "One or more files are too large.")
        if not is_file_type_allowed(file.type, route.file_types):
            raise UploadError(
                UploadErrorType.INVALID_FILE_TYPE,
                "One or more files have an invalid file type.",
            )
