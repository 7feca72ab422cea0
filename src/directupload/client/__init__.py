"""Upload client: authorize files with the server, then send them to storage."""

from directupload.client.errors import ClientErrorType, ClientUploadError
from directupload.client.files import LocalFile
from directupload.client.signal import AbortSignal
from directupload.client.state import FileUploadInfo, UploadStatus
from directupload.client.upload import UploadResult, upload_file, upload_files
from directupload.client.uploader import Uploader

__all__ = [
    "ClientErrorType",
    "ClientUploadError",
    "LocalFile",
    "AbortSignal",
    "FileUploadInfo",
    "UploadStatus",
    "UploadResult",
    "upload_file",
    "upload_files",
    "Uploader",
]
