"""Signature generation for validated upload requests."""

import asyncio
import logging
import math
from typing import Any, Optional

from directupload.models.upload import (
    FileDescriptor,
    FilesResponse,
    MultipartFile,
    MultipartPayload,
    MultipartResponse,
    ObjectInfo,
    PostForm,
    SignedFile,
    SignedPart,
    UploadedFileInfo,
)
from directupload.server.route import BeforeUploadResult, ObjectInfoOverrides, Route
from directupload.server.router import Router
from directupload.server.validation import default_object_key
from directupload.storage.s3 import (
    create_multipart_upload,
    sign_abort_multipart_upload,
    sign_complete_multipart_upload,
    sign_post_object,
    sign_put_object,
    sign_upload_part,
)

logger = logging.getLogger(__name__)


def split_parts(size: int, part_size: int) -> list[int]:
    """Sizes of the parts a file of ``size`` bytes is cut into.

    Every part is ``part_size`` except the last; an empty file still gets
    one (empty) part.
    """
    count = max(1, math.ceil(size / part_size))
    return [part_size] * (count - 1) + [size - part_size * (count - 1)]


def build_object_info(file: FileDescriptor, overrides: ObjectInfoOverrides) -> ObjectInfo:
    metadata = {key.lower(): str(value) for key, value in (overrides.metadata or {}).items()}
    return ObjectInfo(
        key=overrides.key or default_object_key(file.name),
        metadata=metadata,
        acl=overrides.acl,
        storage_class=overrides.storage_class,
        cache_control=overrides.cache_control,
    )


def with_object_info(file: FileDescriptor, object_info: ObjectInfo) -> UploadedFileInfo:
    return UploadedFileInfo(
        name=file.name,
        size=file.size,
        type=file.type,
        id=file.id,
        object_info=object_info,
    )


async def run_before_upload(
    request: Any, route: Route, files: list[FileDescriptor], client_metadata: Any
) -> BeforeUploadResult:
    if route.on_before_upload is None:
        return BeforeUploadResult()
    return await route.on_before_upload(
        request=request, files=files, client_metadata=client_metadata
    )


async def run_after_signed_url(
    request: Any,
    route: Route,
    files: list[UploadedFileInfo],
    metadata: dict[str, Any],
    client_metadata: Any,
) -> dict[str, Any]:
    if route.on_after_signed_url is None:
        return {}
    return await route.on_after_signed_url(
        request=request, files=files, metadata=metadata, client_metadata=client_metadata
    )


async def resolve_object_info(
    file: FileDescriptor, before: BeforeUploadResult
) -> tuple[Optional[UploadedFileInfo], Optional[str]]:
    """Object info for one file, or ``(None, "ignore")`` if the hook drops it."""
    overrides = ObjectInfoOverrides()
    if before.generate_object_info is not None:
        overrides = await before.generate_object_info(file)
    if overrides.skip == "ignore":
        return None, "ignore"
    return with_object_info(file, build_object_info(file, overrides)), overrides.skip


async def handle_files(
    request: Any,
    router: Router,
    route: Route,
    files: list[FileDescriptor],
    client_metadata: Any,
) -> FilesResponse:
    """Authorize single-part uploads, one signed PUT URL or POST form per file."""
    before = await run_before_upload(request, route, files, client_metadata)
    bucket = before.bucket_name or router.bucket_name
    now = router.clock()

    async def sign(file: FileDescriptor) -> Optional[SignedFile]:
        info, skip = await resolve_object_info(file, before)
        if info is None:
            return None
        if skip == "completed":
            return SignedFile(file=info, skip="completed")

        object_info = info.object_info
        options = dict(
            bucket=bucket,
            key=object_info.key,
            content_type=file.type,
            content_length=file.size,
            expires_in=route.signed_url_expires_in,
            metadata=object_info.metadata,
            acl=object_info.acl,
            storage_class=object_info.storage_class,
            cache_control=object_info.cache_control,
            now=now,
        )
        if route.upload_method == "post":
            form = sign_post_object(router.client, **options)
            return SignedFile(file=info, post_form=PostForm(**form))
        return SignedFile(file=info, signed_url=sign_put_object(router.client, **options))

    signed = [item for item in await asyncio.gather(*(sign(f) for f in files)) if item]
    logger.info(
        f"Signed {len(signed)} of {len(files)} file(s) for {route.upload_method.upper()} "
        f"upload to bucket {bucket}"
    )

    metadata = await run_after_signed_url(
        request, route, [item.file for item in signed], before.metadata, client_metadata
    )
    return FilesResponse(files=signed, metadata=metadata)


async def handle_multipart_files(
    request: Any,
    router: Router,
    route: Route,
    files: list[FileDescriptor],
    client_metadata: Any,
) -> MultipartResponse:
    """Open one multipart session per file and sign its parts.

    Raises:
        S3Error: If storage refuses to create a session
    """
    config = route.multipart
    before = await run_before_upload(request, route, files, client_metadata)
    bucket = before.bucket_name or router.bucket_name
    now = router.clock()

    async def sign(file: FileDescriptor) -> Optional[MultipartFile]:
        info, skip = await resolve_object_info(file, before)
        if info is None:
            return None

        object_info = info.object_info
        if skip == "completed":
            return MultipartFile(
                file=info,
                parts=[],
                upload_id="",
                complete_signed_url="",
                abort_signed_url="",
                skip="completed",
            )

        upload_id = await create_multipart_upload(
            router.client,
            bucket=bucket,
            key=object_info.key,
            content_type=file.type,
            metadata=object_info.metadata,
            acl=object_info.acl,
            storage_class=object_info.storage_class,
            cache_control=object_info.cache_control,
            http_client=router.http_client,
            now=now,
        )

        parts = [
            SignedPart(
                signed_url=sign_upload_part(
                    router.client,
                    bucket=bucket,
                    key=object_info.key,
                    upload_id=upload_id,
                    part_number=number,
                    content_length=size,
                    expires_in=config.part_signed_url_expires_in,
                    now=now,
                ),
                part_number=number,
                size=size,
            )
            for number, size in enumerate(split_parts(file.size, config.part_size), start=1)
        ]
        session = dict(
            bucket=bucket,
            key=object_info.key,
            upload_id=upload_id,
            expires_in=config.complete_signed_url_expires_in,
            now=now,
        )
        return MultipartFile(
            file=info,
            parts=parts,
            upload_id=upload_id,
            complete_signed_url=sign_complete_multipart_upload(router.client, **session),
            abort_signed_url=sign_abort_multipart_upload(router.client, **session),
        )

    signed = [item for item in await asyncio.gather(*(sign(f) for f in files)) if item]
    logger.info(
        f"Opened {len(signed)} multipart session(s) for {len(files)} file(s) "
        f"in bucket {bucket}"
    )

    metadata = await run_after_signed_url(
        request, route, [item.file for item in signed], before.metadata, client_metadata
    )
    return MultipartResponse(
        multipart=MultipartPayload(files=signed, part_size=config.part_size),
        metadata=metadata,
    )
