"""Stateful uploader for applications that track uploads over time."""

import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

import httpx

from directupload.client.errors import ClientErrorType, ClientUploadError
from directupload.client.files import LocalFile
from directupload.client.signal import AbortSignal
from directupload.client.state import FileUploadInfo, UploadStatus
from directupload.client.upload import DEFAULT_API, UploadResult, upload_files

logger = logging.getLogger(__name__)

Callback = Callable[..., Union[None, Awaitable[None]]]


async def _call(callback: Optional[Callable[..., Any]], **kwargs: Any) -> Any:
    if callback is None:
        return None
    result = callback(**kwargs)
    if inspect.isawaitable(result):
        return await result
    return result


class Uploader:
    """Upload files through one route and keep the latest batch's state.

    Callbacks are keyword-only and may be sync or async:

    - ``on_before_upload(files=...)``: may return a replacement file list
      (e.g. compressed images) or raise to cancel
    - ``on_upload_begin(files=..., metadata=...)``: authorization obtained
    - ``on_upload_progress(file=...)``: a file is uploading
    - ``on_upload_complete(files=..., failed_files=..., metadata=...)``: at
      least one file completed
    - ``on_upload_fail(succeeded_files=..., failed_files=..., metadata=...)``:
      at least one file failed
    - ``on_upload_settle(files=..., failed_files=..., metadata=...)``: always,
      once per call
    - ``on_error(error=...)``: the whole call failed
    """

    def __init__(
        self,
        *,
        route: str,
        api: str = DEFAULT_API,
        http_client: Optional[httpx.AsyncClient] = None,
        headers: Optional[dict[str, str]] = None,
        upload_batch_size: Optional[int] = None,
        multipart_batch_size: Optional[int] = None,
        retry: int = 0,
        retry_delay: float = 0.0,
        abort_on_error: bool = False,
        on_before_upload: Optional[Callback] = None,
        on_upload_begin: Optional[Callback] = None,
        on_upload_progress: Optional[Callback] = None,
        on_upload_complete: Optional[Callback] = None,
        on_upload_fail: Optional[Callback] = None,
        on_upload_settle: Optional[Callback] = None,
        on_error: Optional[Callback] = None,
    ):
        self.route = route
        self.api = api
        self.http_client = http_client
        self.headers = headers
        self.upload_batch_size = upload_batch_size
        self.multipart_batch_size = multipart_batch_size
        self.retry = retry
        self.retry_delay = retry_delay
        self.abort_on_error = abort_on_error

        self.on_before_upload = on_before_upload
        self.on_upload_begin = on_upload_begin
        self.on_upload_progress = on_upload_progress
        self.on_upload_complete = on_upload_complete
        self.on_upload_fail = on_upload_fail
        self.on_upload_settle = on_upload_settle
        self.on_error = on_error

        self.reset()

    def reset(self) -> None:
        """Forget the previous batch."""
        self._uploads: dict[str, FileUploadInfo] = {}
        self.metadata: dict[str, Any] = {}
        self.is_pending = False
        self.error: Optional[ClientUploadError] = None

    @property
    def progresses(self) -> list[FileUploadInfo]:
        return list(self._uploads.values())

    @property
    def uploaded_files(self) -> list[FileUploadInfo]:
        return [f for f in self._uploads.values() if f.status is UploadStatus.COMPLETE]

    @property
    def failed_files(self) -> list[FileUploadInfo]:
        return [f for f in self._uploads.values() if f.status is UploadStatus.FAILED]

    @property
    def all_succeeded(self) -> bool:
        return all(f.status is UploadStatus.COMPLETE for f in self._uploads.values())

    @property
    def has_failed_files(self) -> bool:
        return any(f.status is UploadStatus.FAILED for f in self._uploads.values())

    @property
    def is_settled(self) -> bool:
        return all(
            f.status in (UploadStatus.COMPLETE, UploadStatus.FAILED)
            for f in self._uploads.values()
        )

    @property
    def average_progress(self) -> float:
        if not self._uploads:
            return 0.0
        return sum(f.progress for f in self._uploads.values()) / len(self._uploads)

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def _on_file_state_change(self, file: FileUploadInfo) -> Any:
        self._uploads[file.key] = file
        if file.status is UploadStatus.UPLOADING and self.on_upload_progress:
            return self.on_upload_progress(file=file)
        return None

    def _on_upload_begin(self, files: list[FileUploadInfo], metadata: dict[str, Any]) -> Any:
        # upload_files awaits whatever an async callback returns
        if self.on_upload_begin:
            return self.on_upload_begin(files=files, metadata=metadata)
        return None

    async def upload(
        self,
        files: Sequence[LocalFile],
        *,
        metadata: Any = None,
        signal: Optional[AbortSignal] = None,
    ) -> UploadResult:
        """Upload a batch, replacing the state of the previous one.

        Raises:
            ClientUploadError: On request-level failure, after ``on_error``
        """
        self.reset()
        self.is_pending = True

        try:
            files = list(files)
            if not files:
                raise ClientUploadError(ClientErrorType.NO_FILES, "No files to upload.")

            if self.on_before_upload:
                replacement = await _call(self.on_before_upload, files=files)
                if replacement is not None:
                    files = list(replacement)
                    if not files:
                        raise ClientUploadError(ClientErrorType.NO_FILES, "No files to upload.")

            result = await upload_files(
                files,
                route=self.route,
                api=self.api,
                metadata=metadata,
                upload_batch_size=self.upload_batch_size,
                multipart_batch_size=self.multipart_batch_size,
                signal=signal,
                headers=self.headers,
                retry=self.retry,
                retry_delay=self.retry_delay,
                abort_on_error=self.abort_on_error,
                http_client=self.http_client,
                on_upload_begin=self._on_upload_begin,
                on_file_state_change=self._on_file_state_change,
            )
        except Exception as e:
            error = e if isinstance(e, ClientUploadError) else ClientUploadError(
                ClientErrorType.UNKNOWN, str(e) or "Failed to upload files."
            )
            logger.warning(f"Upload to route {self.route} failed: {error.type}")
            self.error = error
            self.is_pending = False
            await _call(self.on_upload_settle, files=[], failed_files=[], metadata={})
            await _call(self.on_error, error=error)
            if error is e:
                raise
            raise error from e

        self.metadata = result.metadata
        if result.files:
            await _call(
                self.on_upload_complete,
                files=result.files,
                failed_files=result.failed_files,
                metadata=result.metadata,
            )
        if result.failed_files:
            await _call(
                self.on_upload_fail,
                succeeded_files=result.files,
                failed_files=result.failed_files,
                metadata=result.metadata,
            )

        self.is_pending = False
        await _call(
            self.on_upload_settle,
            files=result.files,
            failed_files=result.failed_files,
            metadata=result.metadata,
        )
        return result
