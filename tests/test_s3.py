"""Tests for the S3 REST helpers."""

import base64
import json
from datetime import datetime, timezone
from unittest.mock import patch
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
from tenacity import wait_none

from directupload.storage.exceptions import S3Error
from directupload.storage.s3 import (
    _send,
    create_multipart_upload,
    metadata_headers,
    parse_s3_error,
    sign_abort_multipart_upload,
    sign_complete_multipart_upload,
    sign_post_object,
    sign_put_object,
    sign_upload_part,
)
from directupload.storage.signer import verify_presigned_url

NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

CREATE_RESPONSE = """<?xml version="1.0" encoding="UTF-8"?>
<InitiateMultipartUploadResult xmlns="http://s3.amazonaws.com/doc/2006-03-01/">
  <Bucket>test-bucket</Bucket>
  <Key>big.bin</Key>
  <UploadId>upload-123</UploadId>
</InitiateMultipartUploadResult>"""

ERROR_RESPONSE = """<?xml version="1.0" encoding="UTF-8"?>
<Error><Code>AccessDenied</Code><Message>Access Denied</Message></Error>"""


def _query(url: str) -> dict[str, str]:
    return {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}


def test_metadata_headers_lowercase_keys():
    """Test metadata header naming."""
    assert metadata_headers({"Author": "me"}) == {"x-amz-meta-author": "me"}
    assert metadata_headers(None) == {}


def test_sign_put_object_binds_headers(storage_client):
    """Test that a signed PUT verifies only with the signed headers."""
    url = sign_put_object(
        storage_client,
        bucket="test-bucket",
        key="dir/a.jpg",
        content_type="image/jpeg",
        content_length=500,
        expires_in=120,
        metadata={"author": "me"},
        acl="public-read",
        storage_class="STANDARD_IA",
        cache_control="max-age=60",
        now=NOW,
    )
    headers = {
        "content-type": "image/jpeg",
        "content-length": "500",
        "cache-control": "max-age=60",
        "x-amz-meta-author": "me",
    }

    assert url.startswith("https://test-bucket.s3.us-east-1.amazonaws.com/dir/a.jpg?")
    query = _query(url)
    assert query["x-amz-acl"] == "public-read"
    assert query["x-amz-storage-class"] == "STANDARD_IA"
    assert query["X-Amz-Expires"] == "120"
    assert verify_presigned_url(url, storage_client.credentials, "PUT", headers=headers, now=NOW)
    assert not verify_presigned_url(
        url,
        storage_client.credentials,
        "PUT",
        headers={**headers, "x-amz-meta-author": "someone else"},
        now=NOW,
    )


def test_sign_post_object_fields(storage_client):
    """Test form fields and policy conditions of a signed POST."""
    form = sign_post_object(
        storage_client,
        bucket="test-bucket",
        key="a.jpg",
        content_type="image/jpeg",
        content_length=500,
        expires_in=120,
        metadata={"Author": "me"},
        acl="private",
        cache_control="no-cache",
        now=NOW,
    )

    assert form["url"] == "https://test-bucket.s3.us-east-1.amazonaws.com"
    fields = form["fields"]
    assert list(fields)[:3] == ["key", "bucket", "Content-Type"]
    assert list(fields)[-1] == "X-Amz-Signature"
    assert fields["x-amz-meta-author"] == "me"
    assert fields["acl"] == "private"

    policy = json.loads(base64.b64decode(fields["Policy"]))
    assert ["content-length-range", 500, 500] in policy["conditions"]
    assert {"Cache-Control": "no-cache"} in policy["conditions"]
    assert {"key": "a.jpg"} in policy["conditions"]


def test_multipart_urls_share_upload_id_and_key(storage_client):
    """Test that part, complete and abort URLs address the same session."""
    common = dict(bucket="test-bucket", key="big.bin", upload_id="upload-123", now=NOW)
    part = sign_upload_part(
        storage_client, part_number=2, content_length=100, expires_in=1500, **common
    )
    complete = sign_complete_multipart_upload(storage_client, expires_in=1800, **common)
    abort = sign_abort_multipart_upload(storage_client, expires_in=1800, **common)

    for url in (part, complete, abort):
        assert urlsplit(url).path == "/big.bin"
        assert _query(url)["uploadId"] == "upload-123"
    assert _query(part)["partNumber"] == "2"
    assert verify_presigned_url(
        part, storage_client.credentials, "PUT", headers={"content-length": "100"}, now=NOW
    )
    assert verify_presigned_url(complete, storage_client.credentials, "POST", now=NOW)
    assert verify_presigned_url(abort, storage_client.credentials, "DELETE", now=NOW)


def test_parse_s3_error():
    """Test error parsing with and without an XML body."""
    error = parse_s3_error(httpx.Response(403, text=ERROR_RESPONSE))
    assert error.code == "AccessDenied"
    assert error.status_code == 403
    assert "Access Denied" in str(error)

    plain = parse_s3_error(httpx.Response(502, text="bad gateway"))
    assert plain.code is None
    assert plain.status_code == 502


@pytest.mark.asyncio
async def test_create_multipart_upload(storage_client):
    """Test session creation parses the upload id."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=CREATE_RESPONSE)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        upload_id = await create_multipart_upload(
            storage_client,
            bucket="test-bucket",
            key="big.bin",
            content_type="application/octet-stream",
            metadata={"Owner": "me"},
            http_client=http_client,
            now=NOW,
        )

    assert upload_id == "upload-123"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.path == "/big.bin"
    assert "uploads=" in str(request.url)
    assert request.headers["x-amz-meta-owner"] == "me"
    assert request.headers["content-type"] == "application/octet-stream"


@pytest.mark.asyncio
async def test_create_multipart_upload_error(storage_client):
    """Test that a storage error becomes an S3Error."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, text=ERROR_RESPONSE)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(S3Error) as exc_info:
            await create_multipart_upload(
                storage_client,
                bucket="test-bucket",
                key="big.bin",
                content_type="application/octet-stream",
                http_client=http_client,
                now=NOW,
            )

    assert exc_info.value.code == "AccessDenied"


@pytest.mark.asyncio
async def test_create_multipart_upload_retries_server_errors(storage_client):
    """Test that a 5xx answer is retried before the session is created."""
    answers = [httpx.Response(503, text="<Error><Code>SlowDown</Code></Error>")]

    def handler(request: httpx.Request) -> httpx.Response:
        return answers.pop() if answers else httpx.Response(200, text=CREATE_RESPONSE)

    with patch.object(_send.retry, "wait", wait_none()):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            upload_id = await create_multipart_upload(
                storage_client,
                bucket="test-bucket",
                key="big.bin",
                content_type="application/octet-stream",
                http_client=http_client,
                now=NOW,
            )

    assert upload_id == "upload-123"
    assert answers == []


@pytest.mark.asyncio
async def test_create_multipart_upload_gives_up_on_server_errors(storage_client):
    """Test that persistent 5xx answers end in an S3Error after three attempts."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500)

    with patch.object(_send.retry, "wait", wait_none()):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
            with pytest.raises(S3Error) as exc_info:
                await create_multipart_upload(
                    storage_client,
                    bucket="test-bucket",
                    key="big.bin",
                    content_type="application/octet-stream",
                    http_client=http_client,
                    now=NOW,
                )

    assert exc_info.value.status_code == 500
    assert len(calls) == 3


@pytest.mark.asyncio
async def test_create_multipart_upload_client_error_not_retried(storage_client):
    """Test that a 4xx answer fails on the first attempt."""
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(403, text=ERROR_RESPONSE)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http_client:
        with pytest.raises(S3Error):
            await create_multipart_upload(
                storage_client,
                bucket="test-bucket",
                key="big.bin",
                content_type="application/octet-stream",
                http_client=http_client,
                now=NOW,
            )

    assert len(calls) == 1
