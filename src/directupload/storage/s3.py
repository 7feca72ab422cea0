"""S3 REST operations used by the upload request handler.

All ``sign_*`` helpers are pure and return URLs (or form fields) a browser
can call directly. :func:`create_multipart_upload` is the only call the
server itself makes to storage.
"""

import logging
import xml.etree.ElementTree as ET
from datetime import datetime
from typing import Any, Mapping

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from directupload.core.constants import STORAGE_REQUEST_EXPIRES_IN
from directupload.storage.clients import StorageClient
from directupload.storage.exceptions import S3Error
from directupload.storage.signer import sign_post_policy, sign_query_url

logger = logging.getLogger(__name__)


def metadata_headers(metadata: Mapping[str, str] | None) -> dict[str, str]:
    """Map object metadata onto lower-cased ``x-amz-meta-*`` names."""
    return {f"x-amz-meta-{key.lower()}": value for key, value in (metadata or {}).items()}


def _find_text(root: ET.Element, name: str) -> str | None:
    """Find the first element with local name ``name``, ignoring namespaces."""
    for element in root.iter():
        if element.tag.rsplit("}", 1)[-1] == name:
            return element.text
    return None


def parse_s3_error(response: httpx.Response) -> S3Error:
    """Turn an S3 XML error body into an :class:`S3Error`."""
    code = message = None
    try:
        root = ET.fromstring(response.text)
        code = _find_text(root, "Code")
        message = _find_text(root, "Message")
    except ET.ParseError:
        pass
    if code is None:
        return S3Error(
            f"S3 request failed with status {response.status_code}",
            status_code=response.status_code,
        )
    return S3Error(f"{code} - {message}", code=code, status_code=response.status_code)


def sign_put_object(
    client: StorageClient,
    *,
    bucket: str,
    key: str,
    content_type: str,
    content_length: int,
    expires_in: int,
    metadata: Mapping[str, str] | None = None,
    acl: str | None = None,
    storage_class: str | None = None,
    cache_control: str | None = None,
    now: datetime | None = None,
) -> str:
    """Presign a single PUT of one object.

    Content type, length, cache control and metadata are signed headers;
    ACL and storage class are signed query parameters.
    """
    query = [("X-Amz-Content-Sha256", "UNSIGNED-PAYLOAD")]
    if acl:
        query.append(("x-amz-acl", acl))
    if storage_class:
        query.append(("x-amz-storage-class", storage_class))

    headers = {
        "content-length": str(content_length),
        "content-type": content_type,
    }
    if cache_control:
        headers["cache-control"] = cache_control
    headers.update(metadata_headers(metadata))

    url = str(httpx.URL(client.build_object_url(bucket, key), params=query))
    return sign_query_url(
        "PUT", url, client.credentials, expires_in=expires_in, headers=headers, now=now
    )


def sign_post_object(
    client: StorageClient,
    *,
    bucket: str,
    key: str,
    content_type: str,
    content_length: int,
    expires_in: int,
    metadata: Mapping[str, str] | None = None,
    acl: str | None = None,
    storage_class: str | None = None,
    cache_control: str | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Presign a browser form POST of one object.

    Returns:
        ``{"url": bucket URL, "fields": ordered form fields}``; the file must
        be appended after every field
    """
    fields: dict[str, str] = {
        "key": key,
        "bucket": bucket,
        "Content-Type": content_type,
    }
    conditions: list[Any] = [
        {"bucket": bucket},
        {"key": key},
        {"Content-Type": content_type},
        ["content-length-range", content_length, content_length],
    ]

    if acl:
        fields["acl"] = acl
        conditions.append({"acl": acl})
    if storage_class:
        fields["x-amz-storage-class"] = storage_class
        conditions.append({"x-amz-storage-class": storage_class})
    if cache_control:
        fields["Cache-Control"] = cache_control
        conditions.append({"Cache-Control": cache_control})
    for name, value in metadata_headers(metadata).items():
        fields[name] = value
        conditions.append({name: value})

    fields.update(
        sign_post_policy(conditions, client.credentials, expires_in=expires_in, now=now)
    )
    return {"url": client.build_bucket_url(bucket), "fields": fields}


def sign_upload_part(
    client: StorageClient,
    *,
    bucket: str,
    key: str,
    upload_id: str,
    part_number: int,
    content_length: int,
    expires_in: int,
    now: datetime | None = None,
) -> str:
    url = str(
        httpx.URL(
            client.build_object_url(bucket, key),
            params={"partNumber": str(part_number), "uploadId": upload_id},
        )
    )
    return sign_query_url(
        "PUT",
        url,
        client.credentials,
        expires_in=expires_in,
        headers={"content-length": str(content_length)},
        now=now,
    )


def sign_complete_multipart_upload(
    client: StorageClient,
    *,
    bucket: str,
    key: str,
    upload_id: str,
    expires_in: int,
    now: datetime | None = None,
) -> str:
    url = str(httpx.URL(client.build_object_url(bucket, key), params={"uploadId": upload_id}))
    return sign_query_url("POST", url, client.credentials, expires_in=expires_in, now=now)


def sign_abort_multipart_upload(
    client: StorageClient,
    *,
    bucket: str,
    key: str,
    upload_id: str,
    expires_in: int,
    now: datetime | None = None,
) -> str:
    url = str(httpx.URL(client.build_object_url(bucket, key), params={"uploadId": upload_id}))
    return sign_query_url("DELETE", url, client.credentials, expires_in=expires_in, now=now)


def _is_retryable(error: BaseException) -> bool:
    if isinstance(error, httpx.TransportError):
        return True
    return isinstance(error, S3Error) and (error.status_code or 0) >= 500


@retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    retry=retry_if_exception(_is_retryable),
    reraise=True,
)
async def _send(http_client: httpx.AsyncClient, request: httpx.Request) -> httpx.Response:
    """Send a control request; transport errors and 5xx answers are retried.

    Raises:
        S3Error: If storage answers with a non-2xx status
    """
    response = await http_client.send(request)
    if not response.is_success:
        raise parse_s3_error(response)
    return response


async def create_multipart_upload(
    client: StorageClient,
    *,
    bucket: str,
    key: str,
    content_type: str,
    metadata: Mapping[str, str] | None = None,
    acl: str | None = None,
    storage_class: str | None = None,
    cache_control: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    now: datetime | None = None,
) -> str:
    """Open a multipart upload session on storage.

    Object-level settings (content type, metadata, ACL, storage class, cache
    control) are fixed here, not on the individual parts.

    Returns:
        The storage-issued upload id

    Raises:
        S3Error: If storage rejects the request or returns no upload id
    """
    headers = {"content-type": content_type}
    if acl:
        headers["x-amz-acl"] = acl
    if storage_class:
        headers["x-amz-storage-class"] = storage_class
    if cache_control:
        headers["cache-control"] = cache_control
    headers.update(metadata_headers(metadata))

    url = sign_query_url(
        "POST",
        f"{client.build_object_url(bucket, key)}?uploads=",
        client.credentials,
        expires_in=STORAGE_REQUEST_EXPIRES_IN,
        headers=headers,
        now=now,
    )

    logger.debug(
        "Creating multipart upload",
        extra={"bucket": bucket, "object_key": key},
    )

    try:
        if http_client is None:
            async with httpx.AsyncClient(timeout=30) as owned_client:
                response = await _send(
                    owned_client, owned_client.build_request("POST", url, headers=headers)
                )
        else:
            response = await _send(
                http_client, http_client.build_request("POST", url, headers=headers)
            )
    except S3Error as error:
        logger.error(
            "Failed to create multipart upload",
            extra={
                "bucket": bucket,
                "object_key": key,
                "status_code": error.status_code,
                "error": str(error),
            },
        )
        raise

    try:
        upload_id = _find_text(ET.fromstring(response.text), "UploadId")
    except ET.ParseError as e:
        raise S3Error(f"Invalid CreateMultipartUpload response: {e}") from e
    if not upload_id:
        raise S3Error("CreateMultipartUpload response did not include an UploadId")

    logger.info(
        "Multipart upload created",
        extra={"bucket": bucket, "object_key": key, "upload_id": upload_id},
    )
    return upload_id
