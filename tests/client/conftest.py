"""Fixtures for the upload client tests."""

import httpx
import pytest

from directupload.client.files import LocalFile

STORAGE = "https://test-bucket.s3.test"


def file_info(file: LocalFile, key: str | None = None) -> dict:
    return {
        "name": file.name,
        "size": file.size,
        "type": file.type,
        "id": file.id,
        "objectInfo": {"key": key or f"k-{file.name}", "metadata": {}},
    }


def signed_file(file: LocalFile, **extra) -> dict:
    """Single-part authorization as the upload endpoint returns it."""
    entry = {"file": file_info(file), "signedUrl": f"{STORAGE}/k-{file.name}"}
    entry.update(extra)
    return entry


def multipart_file(file: LocalFile, part_size: int) -> dict:
    """Multipart authorization with one signed URL per part."""
    key = f"k-{file.name}"
    count = max(-(-file.size // part_size), 1)
    parts = [
        {
            "signedUrl": f"{STORAGE}/{key}?partNumber={n}&uploadId=u-{file.name}",
            "partNumber": n,
            "size": min(part_size, file.size - (n - 1) * part_size),
        }
        for n in range(1, count + 1)
    ]
    return {
        "file": file_info(file, key),
        "parts": parts,
        "uploadId": f"u-{file.name}",
        "completeSignedUrl": f"{STORAGE}/{key}?uploadId=u-{file.name}",
        "abortSignedUrl": f"{STORAGE}/{key}?uploadId=u-{file.name}&abort=1",
    }


class FakeBackend:
    """Upload endpoint and storage behind one mock transport.

    ``authorize`` builds the endpoint's JSON answer from the request body;
    ``storage`` answers every other request. Every request is recorded.
    """

    def __init__(self, authorize=None, storage=None):
        self.requests: list[httpx.Request] = []
        self.authorize = authorize
        self.storage = storage or (lambda request: httpx.Response(200))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/api/upload":
            return self.authorize(request)
        return self.storage(request)

    def storage_requests(self, method: str | None = None) -> list[httpx.Request]:
        return [
            r
            for r in self.requests
            if r.url.host != "testserver" and (method is None or r.method == method)
        ]

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler), base_url="http://testserver"
        )


@pytest.fixture
def files() -> list[LocalFile]:
    return [
        LocalFile.from_bytes(b"alpha", "a.txt"),
        LocalFile.from_bytes(b"bravo!", "b.txt"),
    ]


@pytest.fixture
def backend():
    return FakeBackend


@pytest.fixture
def authorization():
    """Builders for single-part and multipart authorizations."""
    return {"single": signed_file, "multipart": multipart_file}
