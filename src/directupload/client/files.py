"""Local files handed to the upload client."""

import asyncio
import io
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, BinaryIO, Callable, Optional
from uuid import uuid4

import httpx

from directupload.models.upload import FileDescriptor

CHUNK_SIZE = 64 * 1024
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def guess_content_type(name: str) -> str:
    content_type, _ = mimetypes.guess_type(name)
    return content_type or DEFAULT_CONTENT_TYPE


@dataclass
class LocalFile:
    """A file on disk or in memory, described the way the server expects.

    Byte ranges are read lazily, so slicing a large file into parts never
    copies it.
    """

    name: str
    size: int
    type: str
    path: Optional[Path] = None
    data: Optional[bytes] = None
    id: str = field(default_factory=lambda: uuid4().hex)

    @classmethod
    def from_path(
        cls, path: str | os.PathLike, type: Optional[str] = None, name: Optional[str] = None
    ) -> "LocalFile":
        path = Path(path)
        name = name or path.name
        return cls(
            name=name,
            size=path.stat().st_size,
            type=type or guess_content_type(name),
            path=path,
        )

    @classmethod
    def from_bytes(cls, data: bytes, name: str, type: Optional[str] = None) -> "LocalFile":
        return cls(name=name, size=len(data), type=type or guess_content_type(name), data=data)

    def descriptor(self) -> FileDescriptor:
        return FileDescriptor(name=self.name, size=self.size, type=self.type, id=self.id)

    def open(self) -> BinaryIO:
        """Sync file object over the whole content, for multipart form bodies."""
        if self.data is not None:
            return io.BytesIO(self.data)
        return open(self.path, "rb")

    async def iter_range(
        self, start: int = 0, end: Optional[int] = None, chunk_size: int = CHUNK_SIZE
    ) -> AsyncIterator[bytes]:
        """Yield the bytes in ``[start, end)`` in chunks."""
        end = self.size if end is None else min(end, self.size)

        if self.data is not None:
            view = memoryview(self.data)[start:end]
            for offset in range(0, len(view), chunk_size):
                yield bytes(view[offset : offset + chunk_size])
            return

        with open(self.path, "rb") as f:
            await asyncio.to_thread(f.seek, start)
            remaining = end - start
            while remaining > 0:
                chunk = await asyncio.to_thread(f.read, min(chunk_size, remaining))
                if not chunk:
                    break
                remaining -= len(chunk)
                yield chunk


class ProgressStream(httpx.AsyncByteStream):
    """Request body that reports every chunk handed to the transport."""

    def __init__(self, chunks: AsyncIterator[bytes], on_bytes: Callable[[int], None]):
        self._chunks = chunks
        self._on_bytes = on_bytes

    async def __aiter__(self) -> AsyncIterator[bytes]:
        async for chunk in self._chunks:
            yield chunk
            self._on_bytes(len(chunk))
