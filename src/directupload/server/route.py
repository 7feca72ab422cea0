"""Upload route policies.

A route is declared once with :func:`route` and is immutable afterwards.
Single-file and multi-file routes expose different hook signatures to the
user (``file=`` / ``object_info`` versus ``files=`` / ``generate_object_info``);
both are normalised here into the one shape the request handler calls.
"""

import inspect
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Literal, Mapping, Optional

from pydantic import BaseModel

from directupload.core.constants import (
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_MAX_FILES,
    DEFAULT_MULTIPART_COMPLETE_SIGNED_URL_EXPIRES_IN,
    DEFAULT_MULTIPART_PART_SIGNED_URL_EXPIRES_IN,
    DEFAULT_MULTIPART_PART_SIZE,
    DEFAULT_SIGNED_URL_EXPIRES_IN,
)
from directupload.models.upload import FileDescriptor, UploadedFileInfo

UploadMethod = Literal["put", "post"]
SkipDirective = Literal["ignore", "completed"]


@dataclass(frozen=True)
class ObjectInfoOverrides:
    """Per-file values a hook may supply instead of the defaults.

    ``skip="ignore"`` drops the file from the response, ``skip="completed"``
    returns it without a signature so the client treats it as done.
    """

    key: Optional[str] = None
    metadata: Optional[Mapping[str, str]] = None
    acl: Optional[str] = None
    storage_class: Optional[str] = None
    cache_control: Optional[str] = None
    skip: Optional[SkipDirective] = None

    @classmethod
    def coerce(cls, value: "ObjectInfoOverrides | Mapping[str, Any] | None") -> "ObjectInfoOverrides":
        if value is None:
            return cls()
        if isinstance(value, cls):
            return value
        if isinstance(value, Mapping):
            return cls(**value)
        raise TypeError(f"Object info must be a mapping or ObjectInfoOverrides, got {type(value).__name__}")


ObjectInfoGenerator = Callable[[FileDescriptor], Awaitable[ObjectInfoOverrides]]


@dataclass(frozen=True)
class BeforeUploadResult:
    metadata: dict[str, Any] = field(default_factory=dict)
    bucket_name: Optional[str] = None
    generate_object_info: Optional[ObjectInfoGenerator] = None


@dataclass(frozen=True)
class MultipartConfig:
    part_size: int = DEFAULT_MULTIPART_PART_SIZE
    part_signed_url_expires_in: int = DEFAULT_MULTIPART_PART_SIGNED_URL_EXPIRES_IN
    complete_signed_url_expires_in: int = DEFAULT_MULTIPART_COMPLETE_SIGNED_URL_EXPIRES_IN


BeforeUploadHook = Callable[..., Awaitable[BeforeUploadResult]]
AfterSignedUrlHook = Callable[..., Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class Route:
    """Normalised upload policy evaluated by the request handler."""

    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    file_types: tuple[str, ...] = ()
    max_files: int = 1
    multiple_files: bool = False
    multipart: Optional[MultipartConfig] = None
    upload_method: UploadMethod = "put"
    signed_url_expires_in: int = DEFAULT_SIGNED_URL_EXPIRES_IN
    client_metadata_schema: Optional[type[BaseModel]] = None
    on_before_upload: Optional[BeforeUploadHook] = None
    on_after_signed_url: Optional[AfterSignedUrlHook] = None


async def maybe_await(value: Any) -> Any:
    """Await ``value`` if a hook returned an awaitable."""
    if inspect.isawaitable(value):
        return await value
    return value


def _get(result: Any, name: str) -> Any:
    if result is None:
        return None
    if isinstance(result, Mapping):
        return result.get(name)
    return getattr(result, name, None)


def _wrap_generator(generator: Callable[..., Any]) -> ObjectInfoGenerator:
    async def generate(file: FileDescriptor) -> ObjectInfoOverrides:
        return ObjectInfoOverrides.coerce(await maybe_await(generator(file=file)))

    return generate


def _normalize_before_upload(hook: Callable[..., Any], multiple_files: bool) -> BeforeUploadHook:
    async def on_before_upload(
        *, request: Any, files: list[FileDescriptor], client_metadata: Any
    ) -> BeforeUploadResult:
        if multiple_files:
            result = await maybe_await(
                hook(request=request, files=files, client_metadata=client_metadata)
            )
        else:
            result = await maybe_await(
                hook(request=request, file=files[0], client_metadata=client_metadata)
            )

        if result is None:
            return BeforeUploadResult()

        generator = _get(result, "generate_object_info")
        if generator is None and not multiple_files:
            object_info = _get(result, "object_info")
            if object_info is not None:
                overrides = ObjectInfoOverrides.coerce(object_info)
                generator = lambda file: overrides  # noqa: E731

        return BeforeUploadResult(
            metadata=dict(_get(result, "metadata") or {}),
            bucket_name=_get(result, "bucket_name"),
            generate_object_info=_wrap_generator(generator) if generator else None,
        )

    return on_before_upload


def _normalize_after_signed_url(hook: Callable[..., Any], multiple_files: bool) -> AfterSignedUrlHook:
    async def on_after_signed_url(
        *,
        request: Any,
        files: list[UploadedFileInfo],
        metadata: dict[str, Any],
        client_metadata: Any,
    ) -> dict[str, Any]:
        kwargs = {"request": request, "metadata": metadata, "client_metadata": client_metadata}
        if multiple_files:
            kwargs["files"] = files
        else:
            kwargs["file"] = files[0] if files else None
        result = await maybe_await(hook(**kwargs))
        return dict(_get(result, "metadata") or {})

    return on_after_signed_url


def route(
    *,
    multiple_files: bool = False,
    max_files: Optional[int] = None,
    max_file_size: Optional[int] = None,
    file_types: Optional[list[str]] = None,
    signed_url_expires_in: Optional[int] = None,
    multipart: bool = False,
    part_size: Optional[int] = None,
    part_signed_url_expires_in: Optional[int] = None,
    complete_signed_url_expires_in: Optional[int] = None,
    upload_method: UploadMethod = "put",
    client_metadata_schema: Optional[type[BaseModel]] = None,
    on_before_upload: Optional[Callable[..., Any]] = None,
    on_after_signed_url: Optional[Callable[..., Any]] = None,
) -> Route:
    """Declare an upload route.

    Args:
        multiple_files: Allow more than one file per request
        max_files: Maximum files per request, multi-file routes only (default 3)
        max_file_size: Maximum size of each file in bytes (default 5 MiB)
        file_types: Allowed MIME types, ``image/*`` style wildcards accepted;
            empty allows everything
        signed_url_expires_in: Lifetime of single-part signatures in seconds
        multipart: Upload every file as an S3 multipart session
        part_size: Part size in bytes for multipart routes (default 50 MiB)
        part_signed_url_expires_in: Lifetime of part URLs in seconds
        complete_signed_url_expires_in: Lifetime of complete/abort URLs in seconds
        upload_method: ``put`` (signed URL) or ``post`` (signed form)
        client_metadata_schema: Pydantic model validating client metadata
        on_before_upload: Called once per request before signing. Receives
            ``request``, ``client_metadata`` and ``file`` (single-file routes)
            or ``files``. May raise :class:`RejectUpload`, and may return
            ``metadata``, ``bucket_name`` and ``object_info`` (single-file) or
            ``generate_object_info`` (multi-file, called once per file)
        on_after_signed_url: Called once per request after signing with
            ``request``, ``metadata``, ``client_metadata`` and ``file``/``files``.
            May return ``{"metadata": {...}}`` to send back to the client

    Raises:
        ValueError: If the declaration is inconsistent
    """
    if multipart and upload_method == "post":
        raise ValueError("Multipart routes cannot use the post upload method")
    if upload_method not in ("put", "post"):
        raise ValueError(f"Unknown upload method: {upload_method!r}")
    if max_files is not None and not multiple_files:
        raise ValueError("max_files requires multiple_files=True")

    resolved_max_files = (max_files or DEFAULT_MAX_FILES) if multiple_files else 1
    if resolved_max_files < 1:
        raise ValueError("max_files must be at least 1")

    multipart_config = None
    if multipart:
        multipart_config = MultipartConfig(
            part_size=part_size or DEFAULT_MULTIPART_PART_SIZE,
            part_signed_url_expires_in=(
                part_signed_url_expires_in or DEFAULT_MULTIPART_PART_SIGNED_URL_EXPIRES_IN
            ),
            complete_signed_url_expires_in=(
                complete_signed_url_expires_in
                or DEFAULT_MULTIPART_COMPLETE_SIGNED_URL_EXPIRES_IN
            ),
        )
        if multipart_config.part_size <= 0:
            raise ValueError("part_size must be positive")

    return Route(
        max_file_size=max_file_size or DEFAULT_MAX_FILE_SIZE,
        file_types=tuple(file_types or ()),
        max_files=resolved_max_files,
        multiple_files=multiple_files,
        multipart=multipart_config,
        upload_method=upload_method,
        signed_url_expires_in=signed_url_expires_in or DEFAULT_SIGNED_URL_EXPIRES_IN,
        client_metadata_schema=client_metadata_schema,
        on_before_upload=(
            _normalize_before_upload(on_before_upload, multiple_files)
            if on_before_upload
            else None
        ),
        on_after_signed_url=(
            _normalize_after_signed_url(on_after_signed_url, multiple_files)
            if on_after_signed_url
            else None
        ),
    )
