"""Upload orchestration: authorize a batch with the server, then transfer it.

Request-level problems (no files, the server refusing the batch, the
whole operation being aborted) raise :class:`ClientUploadError`. A file
that fails to transfer is recorded in ``UploadResult.failed_files`` and
never stops its siblings, unless ``abort_on_error`` is set.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence, Union

import httpx
from pydantic import ValidationError

from directupload.client.errors import ClientErrorType, ClientUploadError, UploadAborted
from directupload.client.files import LocalFile
from directupload.client.retry import with_retries
from directupload.client.signal import AbortSignal
from directupload.client.state import FileUpload, FileUploadInfo, UploadStatus
from directupload.client.transfer import (
    abort_multipart_upload,
    post_file,
    put_file,
    upload_multipart_file,
)
from directupload.models.upload import MultipartFile, SignedFile

logger = logging.getLogger(__name__)

DEFAULT_API = "/api/upload"

Authorization = Union[SignedFile, MultipartFile]
BeginCallback = Callable[[list[FileUploadInfo], dict[str, Any]], Optional[Awaitable[None]]]
StateChangeCallback = Callable[[FileUploadInfo], Optional[Awaitable[None]]]


@dataclass
class UploadResult:
    files: list[FileUploadInfo] = field(default_factory=list)
    failed_files: list[FileUploadInfo] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class SingleUploadResult:
    file: FileUploadInfo
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class _SignedUrls:
    authorizations: list[Authorization]
    metadata: dict[str, Any]
    part_size: int = 0


def match_files(
    files: Sequence[LocalFile], authorizations: Sequence[Authorization]
) -> list[tuple[LocalFile, Authorization]]:
    """Pair each authorization with the local file it was issued for.

    The echoed correlation id is used when present; otherwise the first
    unclaimed file with the same name, size and type wins. Files the server
    dropped have no authorization and are left out.
    """
    unclaimed = list(files)
    pairs = []
    for authorization in authorizations:
        described = authorization.file
        match = None
        if described.id is not None:
            match = next((f for f in unclaimed if f.id == described.id), None)
        if match is None:
            match = next(
                (
                    f
                    for f in unclaimed
                    if (f.name, f.size, f.type) == (described.name, described.size, described.type)
                ),
                None,
            )
        if match is None:
            raise ClientUploadError(
                ClientErrorType.UNKNOWN,
                f"Server returned an authorization for an unknown file: {described.name}",
            )
        unclaimed.remove(match)
        pairs.append((match, authorization))
    return pairs


async def _request_signed_urls(
    http_client: httpx.AsyncClient,
    api: str,
    route: str,
    files: Sequence[LocalFile],
    metadata: Any,
    headers: Optional[Mapping[str, str]],
    signal: AbortSignal,
    retry: int,
    retry_delay: float,
) -> _SignedUrls:
    body = {
        "route": route,
        "files": [f.descriptor().model_dump(by_alias=True, exclude_none=True) for f in files],
    }
    if metadata is not None:
        body["metadata"] = metadata

    async def attempt() -> httpx.Response:
        return await signal.run(http_client.post(api, json=body, headers=headers))

    response = await with_retries(attempt, retry=retry, delay=retry_delay, signal=signal)

    if not response.is_success:
        try:
            error = response.json().get("error") or {}
        except ValueError:
            error = {}
        raise ClientUploadError(
            error.get("type") or ClientErrorType.UNKNOWN,
            error.get("message") or "Failed to obtain pre-signed URLs.",
        )

    payload = response.json()
    try:
        if "multipart" in payload:
            multipart = payload["multipart"]
            authorizations = [MultipartFile.model_validate(f) for f in multipart["files"]]
            part_size = multipart["partSize"]
        else:
            authorizations = [SignedFile.model_validate(f) for f in payload.get("files") or []]
            part_size = 0
    except (KeyError, TypeError, ValidationError) as e:
        raise ClientUploadError(ClientErrorType.UNKNOWN, f"Invalid upload response: {e}") from e

    if not authorizations:
        raise ClientUploadError(
            ClientErrorType.UNKNOWN,
            "No pre-signed URLs returned from server. Check your upload router config.",
        )

    return _SignedUrls(authorizations, payload.get("metadata") or {}, part_size)


async def _transfer(
    http_client: httpx.AsyncClient,
    upload: FileUpload,
    authorization: Authorization,
    *,
    part_size: int,
    signal: AbortSignal,
    multipart_batch_size: Optional[int],
    retry: int,
    retry_delay: float,
    notify: Callable[[FileUpload], None],
) -> None:
    def on_progress(fraction: float) -> None:
        if upload.report_progress(fraction):
            notify(upload)

    if isinstance(authorization, MultipartFile):
        await upload_multipart_file(
            http_client,
            upload.raw,
            authorization.parts,
            part_size,
            authorization.complete_signed_url,
            signal=signal,
            on_progress=on_progress,
            batch_size=multipart_batch_size,
            retry=retry,
            retry_delay=retry_delay,
        )
    elif authorization.post_form is not None:
        await post_file(
            http_client,
            upload.raw,
            authorization.post_form,
            signal=signal,
            on_progress=on_progress,
            retry=retry,
            retry_delay=retry_delay,
        )
    elif authorization.signed_url:
        await put_file(
            http_client,
            upload.raw,
            authorization.signed_url,
            upload.file.object_info,
            signal=signal,
            on_progress=on_progress,
            retry=retry,
            retry_delay=retry_delay,
        )
    else:
        raise ValueError("Invalid upload configuration: missing signed URL or post form")


async def upload_files(
    files: Sequence[LocalFile],
    *,
    route: str,
    api: str = DEFAULT_API,
    metadata: Any = None,
    upload_batch_size: Optional[int] = None,
    multipart_batch_size: Optional[int] = None,
    signal: Optional[AbortSignal] = None,
    headers: Optional[Mapping[str, str]] = None,
    retry: int = 0,
    retry_delay: float = 0.0,
    abort_on_error: bool = False,
    http_client: Optional[httpx.AsyncClient] = None,
    on_upload_begin: Optional[BeginCallback] = None,
    on_file_state_change: Optional[StateChangeCallback] = None,
) -> UploadResult:
    """Upload files directly to storage through a server route.

    Args:
        files: Files to upload
        route: Upload route name configured on the server
        api: Upload endpoint, absolute or relative to the client's base URL
        metadata: JSON-serializable metadata sent to the server hooks
        upload_batch_size: Files transferred at the same time, all by default;
            1 uploads strictly in order
        multipart_batch_size: Parts of one file transferred at the same time
        signal: Aborts every request of this call when fired
        headers: Extra headers for the server request
        retry: Extra attempts for each request
        retry_delay: Seconds between attempts
        abort_on_error: Abort the sibling transfers when one file fails
        http_client: Client to send requests with; one is created if omitted
        on_upload_begin: Called with the pending files and the server
            metadata once authorization succeeded, before any transfer;
            awaited if it is a coroutine function
        on_file_state_change: Called on every state or progress change; a
            returned awaitable is scheduled and awaited before this returns

    Returns:
        UploadResult: Completed files, failed files and server metadata

    Raises:
        ClientUploadError: If there is nothing to upload, the server refuses
            the batch, the signal fires or the request otherwise fails
    """
    files = list(files)
    if not files:
        raise ClientUploadError(ClientErrorType.NO_FILES, "No files to upload.")

    signal = signal or AbortSignal()
    if http_client is None:
        if httpx.URL(api).is_relative_url:
            raise ValueError(
                f"api must be an absolute URL when no http_client is given, got {api!r}"
            )
        async with httpx.AsyncClient(timeout=httpx.Timeout(30.0, write=None)) as owned_client:
            return await upload_files(
                files,
                route=route,
                api=api,
                metadata=metadata,
                upload_batch_size=upload_batch_size,
                multipart_batch_size=multipart_batch_size,
                signal=signal,
                headers=headers,
                retry=retry,
                retry_delay=retry_delay,
                abort_on_error=abort_on_error,
                http_client=owned_client,
                on_upload_begin=on_upload_begin,
                on_file_state_change=on_file_state_change,
            )

    callbacks: list[asyncio.Future] = []

    def notify(upload: FileUpload) -> None:
        if on_file_state_change:
            result = on_file_state_change(upload.snapshot())
            if inspect.isawaitable(result):
                callbacks.append(asyncio.ensure_future(result))

    try:
        signed = await _request_signed_urls(
            http_client, api, route, files, metadata, headers, signal, retry, retry_delay
        )

        uploads = [
            (FileUpload(raw, auth.file), auth)
            for raw, auth in match_files(files, signed.authorizations)
        ]

        if on_upload_begin:
            begun = on_upload_begin([upload.snapshot() for upload, _ in uploads], signed.metadata)
            if inspect.isawaitable(begun):
                await begun
        for upload, _ in uploads:
            notify(upload)

        transfer_signal = signal.child() if abort_on_error else signal

        async def run(upload: FileUpload, authorization: Authorization) -> None:
            if authorization.skip == "completed":
                upload.complete()
                notify(upload)
                return

            if transfer_signal.aborted:
                upload.fail(ClientUploadError(ClientErrorType.ABORTED, "Upload aborted."))
                notify(upload)
                return

            upload.start()
            notify(upload)
            try:
                await _transfer(
                    http_client,
                    upload,
                    authorization,
                    part_size=signed.part_size,
                    signal=transfer_signal,
                    multipart_batch_size=multipart_batch_size,
                    retry=retry,
                    retry_delay=retry_delay,
                    notify=notify,
                )
            except Exception as e:
                if isinstance(authorization, MultipartFile):
                    await abort_multipart_upload(http_client, authorization.abort_signed_url)

                if isinstance(e, UploadAborted) or transfer_signal.aborted:
                    error = ClientUploadError(ClientErrorType.ABORTED, "Upload aborted.")
                else:
                    logger.warning(f"Failed to upload {upload.file.name}: {e}")
                    error = ClientUploadError(
                        ClientErrorType.S3_UPLOAD, "Failed to upload file to S3."
                    )
                    if abort_on_error:
                        transfer_signal.abort()
                upload.fail(error)
                notify(upload)
                return

            upload.complete()
            notify(upload)

        batch_size = upload_batch_size or len(uploads) or 1
        for i in range(0, len(uploads), batch_size):
            await asyncio.gather(*(run(upload, auth) for upload, auth in uploads[i : i + batch_size]))

        if callbacks:
            await asyncio.gather(*callbacks)

        if signal.aborted:
            raise UploadAborted()

    except UploadAborted as e:
        raise ClientUploadError(ClientErrorType.ABORTED, "Upload aborted.") from e
    except ClientUploadError:
        raise
    except Exception as e:
        if signal.aborted:
            raise ClientUploadError(ClientErrorType.ABORTED, "Upload aborted.") from e
        raise ClientUploadError(ClientErrorType.UNKNOWN, str(e) or "Failed to upload files.") from e
    finally:
        for callback in callbacks:
            callback.cancel()

    snapshots = [upload.snapshot() for upload, _ in uploads]
    return UploadResult(
        files=[s for s in snapshots if s.status is UploadStatus.COMPLETE],
        failed_files=[s for s in snapshots if s.status is UploadStatus.FAILED],
        metadata=signed.metadata,
    )


async def upload_file(
    file: LocalFile,
    *,
    route: str,
    on_upload_begin: Optional[Callable[[FileUploadInfo, dict[str, Any]], None]] = None,
    **kwargs: Any,
) -> SingleUploadResult:
    """Upload one file; unlike :func:`upload_files`, a failed transfer raises.

    Accepts the keyword arguments of :func:`upload_files` except
    ``upload_batch_size`` and ``abort_on_error``.

    Raises:
        ClientUploadError: If the upload did not complete
    """
    begin = None
    if on_upload_begin:
        begin = lambda files, metadata: on_upload_begin(files[0], metadata)  # noqa: E731

    result = await upload_files([file], route=route, on_upload_begin=begin, **kwargs)
    if not result.files:
        failed = result.failed_files[0] if result.failed_files else None
        if failed is not None and failed.error is not None:
            raise failed.error
        raise ClientUploadError(ClientErrorType.UNKNOWN, "Failed to upload file.")
    return SingleUploadResult(file=result.files[0], metadata=result.metadata)
