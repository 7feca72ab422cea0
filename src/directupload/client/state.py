"""Per-file upload state."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from directupload.client.errors import ClientUploadError, InvalidTransition
from directupload.client.files import LocalFile
from directupload.models.upload import ObjectInfo, UploadedFileInfo

# Reserved for confirmed completion
MAX_IN_FLIGHT_PROGRESS = 0.99


class UploadStatus(str, Enum):
    """File upload status enumeration."""

    PENDING = "pending"  # Authorized, transfer not started
    UPLOADING = "uploading"
    COMPLETE = "complete"
    FAILED = "failed"


_TRANSITIONS: dict[UploadStatus, frozenset[UploadStatus]] = {
    UploadStatus.PENDING: frozenset(
        {UploadStatus.UPLOADING, UploadStatus.COMPLETE, UploadStatus.FAILED}
    ),
    UploadStatus.UPLOADING: frozenset({UploadStatus.COMPLETE, UploadStatus.FAILED}),
    UploadStatus.COMPLETE: frozenset(),
    UploadStatus.FAILED: frozenset(),
}


@dataclass(frozen=True)
class FileUploadInfo:
    """Immutable view of one file's upload, handed to callbacks."""

    raw: LocalFile
    name: str
    size: int
    type: str
    object_info: ObjectInfo
    status: UploadStatus
    progress: float
    id: Optional[str] = None
    error: Optional[ClientUploadError] = None

    @property
    def key(self) -> str:
        return self.object_info.key


class FileUpload:
    """Mutable upload state of one file, owned by its transfer task."""

    def __init__(self, raw: LocalFile, file: UploadedFileInfo):
        self.raw = raw
        self.file = file
        self.status = UploadStatus.PENDING
        self.progress = 0.0
        self.error: Optional[ClientUploadError] = None

    def _move(self, status: UploadStatus) -> None:
        if status not in _TRANSITIONS[self.status]:
            raise InvalidTransition(
                f"{self.file.name}: cannot go from {self.status.value} to {status.value}"
            )
        self.status = status

    def start(self) -> None:
        self._move(UploadStatus.UPLOADING)

    def report_progress(self, fraction: float) -> bool:
        """Record transfer progress; returns False once the file has settled."""
        if self.status is not UploadStatus.UPLOADING:
            return False
        self.progress = max(self.progress, min(fraction, MAX_IN_FLIGHT_PROGRESS))
        return True

    def complete(self) -> None:
        self._move(UploadStatus.COMPLETE)
        self.progress = 1.0

    def fail(self, error: ClientUploadError) -> None:
        self._move(UploadStatus.FAILED)
        self.error = error

    def snapshot(self) -> FileUploadInfo:
        return FileUploadInfo(
            raw=self.raw,
            name=self.file.name,
            size=self.file.size,
            type=self.file.type,
            id=self.file.id,
            object_info=self.file.object_info,
            status=self.status,
            progress=self.progress,
            error=self.error,
        )
