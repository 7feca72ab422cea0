"""Upload endpoint wire models.

Field names are snake_case in Python and camelCase on the wire.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FileDescriptor(CamelModel):
    """A file the client wants to upload, described without its bytes."""

    name: str = Field(min_length=1, strict=True)
    size: int = Field(ge=0, strict=True)
    type: str = Field(min_length=1, strict=True)
    id: Optional[str] = None  # client-generated correlation id, echoed back


class UploadRequestBody(CamelModel):
    """Request model for the upload endpoint."""

    route: str = Field(min_length=1, strict=True)
    files: list[FileDescriptor] = Field(min_length=1)
    metadata: Any = None


class ObjectInfo(CamelModel):
    """Where and how one file is stored."""

    key: str
    metadata: dict[str, str] = Field(default_factory=dict)
    acl: Optional[str] = Field(default=None, exclude=True)
    storage_class: Optional[str] = Field(default=None, exclude=True)
    cache_control: Optional[str] = None


class UploadedFileInfo(FileDescriptor):
    """A file descriptor together with its resolved object info."""

    object_info: ObjectInfo


class PostForm(CamelModel):
    """Presigned form POST: fields must be sent in order, file last."""

    url: str
    fields: dict[str, str]


class SignedFile(CamelModel):
    """Single-part authorization for one file."""

    file: UploadedFileInfo
    signed_url: Optional[str] = None
    post_form: Optional[PostForm] = None
    skip: Optional[Literal["completed"]] = None


class SignedPart(CamelModel):
    signed_url: str
    part_number: int
    size: int


class MultipartFile(CamelModel):
    """Multipart session authorization for one file."""

    file: UploadedFileInfo
    parts: list[SignedPart]
    upload_id: str
    complete_signed_url: str
    abort_signed_url: str
    skip: Optional[Literal["completed"]] = None


class FilesResponse(CamelModel):
    files: list[SignedFile]
    metadata: dict[str, Any] = Field(default_factory=dict)


class MultipartPayload(CamelModel):
    files: list[MultipartFile]
    part_size: int


class MultipartResponse(CamelModel):
    multipart: MultipartPayload
    metadata: dict[str, Any] = Field(default_factory=dict)


class ErrorDetail(BaseModel):
    type: str
    message: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
