"""Byte transfer from the client straight to storage.

Each function moves one file and raises on failure; deciding what a
failure means for the batch is left to :mod:`directupload.client.upload`.
"""

import asyncio
import logging
from typing import Callable, Optional

import httpx

from directupload.client.files import LocalFile, ProgressStream
from directupload.client.retry import with_retries
from directupload.client.signal import AbortSignal
from directupload.models.upload import ObjectInfo, PostForm, SignedPart
from directupload.storage.exceptions import S3Error
from directupload.storage.s3 import metadata_headers, parse_s3_error

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


def _fraction(sent: int, total: int) -> float:
    return sent / total if total else 0.0


def build_complete_multipart_body(etags: dict[int, str]) -> str:
    """CompleteMultipartUpload manifest, parts in ascending order."""
    parts = "".join(
        f"<Part><ETag>{etags[number]}</ETag><PartNumber>{number}</PartNumber></Part>"
        for number in sorted(etags)
    )
    return f"<CompleteMultipartUpload>{parts}</CompleteMultipartUpload>"


async def put_file(
    http_client: httpx.AsyncClient,
    file: LocalFile,
    signed_url: str,
    object_info: ObjectInfo,
    *,
    signal: AbortSignal,
    on_progress: ProgressCallback,
    retry: int = 0,
    retry_delay: float = 0.0,
) -> None:
    """Upload a file with one signed PUT.

    Headers repeat exactly what was signed: type, length, cache control
    and ``x-amz-meta-*``.

    Raises:
        S3Error: If storage answers with a non-2xx status
        UploadAborted: If the signal fires
    """
    headers = {"content-type": file.type, "content-length": str(file.size)}
    if object_info.cache_control:
        headers["cache-control"] = object_info.cache_control
    headers.update(metadata_headers(object_info.metadata))

    async def attempt() -> None:
        sent = 0

        def on_bytes(count: int) -> None:
            nonlocal sent
            sent += count
            on_progress(_fraction(sent, file.size))

        response = await signal.run(
            http_client.put(
                signed_url,
                content=ProgressStream(file.iter_range(), on_bytes),
                headers=headers,
            )
        )
        if not response.is_success:
            raise parse_s3_error(response)

    await with_retries(attempt, retry=retry, delay=retry_delay, signal=signal)


async def post_file(
    http_client: httpx.AsyncClient,
    file: LocalFile,
    post_form: PostForm,
    *,
    signal: AbortSignal,
    on_progress: ProgressCallback,
    retry: int = 0,
    retry_delay: float = 0.0,
) -> None:
    """Upload a file as a signed form POST, policy fields first and file last.

    Raises:
        S3Error: If storage answers with a non-2xx status
        UploadAborted: If the signal fires
    """

    async def attempt() -> None:
        with file.open() as fh:
            request = http_client.build_request(
                "POST",
                post_form.url,
                data=post_form.fields,
                files={"file": (file.name, fh, file.type)},
            )
            total = int(request.headers.get("content-length", 0))
            sent = 0

            def on_bytes(count: int) -> None:
                nonlocal sent
                sent += count
                on_progress(_fraction(sent, total))

            request.stream = ProgressStream(request.stream.__aiter__(), on_bytes)
            response = await signal.run(http_client.send(request))

        if not response.is_success:
            raise parse_s3_error(response)

    await with_retries(attempt, retry=retry, delay=retry_delay, signal=signal)


async def upload_multipart_file(
    http_client: httpx.AsyncClient,
    file: LocalFile,
    parts: list[SignedPart],
    part_size: int,
    complete_signed_url: str,
    *,
    signal: AbortSignal,
    on_progress: ProgressCallback,
    batch_size: Optional[int] = None,
    retry: int = 0,
    retry_delay: float = 0.0,
) -> None:
    """Upload the parts of a multipart session, then complete it.

    Parts go out ``batch_size`` at a time (all at once by default). Progress
    is the mean of the parts' progress.

    Raises:
        S3Error: If a part or the completion is refused by storage
        UploadAborted: If the signal fires
    """
    progresses = {part.part_number: 0.0 for part in parts}
    etags: dict[int, str] = {}

    def report() -> None:
        on_progress(sum(progresses.values()) / max(len(progresses), 1))

    async def send_part(part: SignedPart) -> None:
        start = (part.part_number - 1) * part_size
        end = min(start + part.size, file.size)

        async def attempt() -> str:
            sent = 0
            progresses[part.part_number] = 0.0

            def on_bytes(count: int) -> None:
                nonlocal sent
                sent += count
                progresses[part.part_number] = _fraction(sent, end - start)
                report()

            response = await signal.run(
                http_client.put(
                    part.signed_url,
                    content=ProgressStream(file.iter_range(start, end), on_bytes),
                    headers={"content-length": str(end - start)},
                )
            )
            if not response.is_success:
                raise parse_s3_error(response)
            etag = response.headers.get("etag", "").replace('"', "")
            if not etag:
                # ETag must be listed in the bucket CORS ExposeHeaders
                raise S3Error(
                    f"Part {part.part_number} response has no ETag",
                    status_code=response.status_code,
                )
            return etag

        etags[part.part_number] = await with_retries(
            attempt, retry=retry, delay=retry_delay, signal=signal
        )
        progresses[part.part_number] = 1.0
        report()

    batch_size = batch_size or len(parts) or 1
    for i in range(0, len(parts), batch_size):
        results = await asyncio.gather(
            *(send_part(part) for part in parts[i : i + batch_size]),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result

    body = build_complete_multipart_body(etags)

    async def complete() -> None:
        response = await signal.run(
            http_client.post(
                complete_signed_url,
                content=body,
                headers={"content-type": "application/xml"},
            )
        )
        if not response.is_success:
            raise parse_s3_error(response)

    await with_retries(complete, retry=retry, delay=retry_delay, signal=signal)


async def abort_multipart_upload(http_client: httpx.AsyncClient, abort_signed_url: str) -> None:
    """Best-effort cleanup of a failed multipart session; never raises."""
    try:
        response = await http_client.delete(abort_signed_url)
    except httpx.HTTPError as e:
        logger.warning(f"Failed to abort multipart upload: {e}")
        return

    if response.is_success:
        logger.info("Multipart upload aborted")
    else:
        logger.warning(
            f"Failed to abort multipart upload: {parse_s3_error(response)}",
            extra={"http_status": response.status_code},
        )
