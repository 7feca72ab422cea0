"""Framework-agnostic entry point of the upload endpoint.

``handle_request`` accepts any request object with a ``method`` attribute
and an awaitable ``json()`` (Starlette's ``Request`` qualifies) and always
answers with a :class:`HandlerResponse`. Policy violations become 4xx
bodies of the form ``{"error": {"type": ..., "message": ...}}``; errors
raised by user hooks, other than :class:`RejectUpload`, and storage errors
propagate to the caller.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from pydantic import ValidationError

from directupload.core.logging import upload_route_context
from directupload.models.upload import UploadRequestBody
from directupload.server.errors import RejectUpload, UploadError, UploadErrorType
from directupload.server.handlers import handle_files, handle_multipart_files
from directupload.server.route import Route
from directupload.server.router import Router
from directupload.server.validation import validate_files

logger = logging.getLogger(__name__)


class UploadRequest(Protocol):
    method: str

    async def json(self) -> Any: ...


@dataclass
class HandlerResponse:
    status_code: int
    body: dict[str, Any]
    headers: dict[str, str] = field(
        default_factory=lambda: {"content-type": "application/json"}
    )

    def json(self) -> dict[str, Any]:
        return self.body

    def text(self) -> str:
        return json.dumps(self.body)


def _error(error: UploadError) -> HandlerResponse:
    return HandlerResponse(status_code=error.status_code, body=error.to_body())


def _validate_client_metadata(route: Route, raw: Any) -> Any:
    """Validated client metadata as the hooks will see it.

    Without a schema the raw value is passed through (``None`` becomes ``{}``).
    """
    if route.client_metadata_schema is None:
        return raw if raw is not None else {}
    try:
        return route.client_metadata_schema.model_validate(raw if raw is not None else {})
    except ValidationError as e:
        raise UploadError(UploadErrorType.INVALID_METADATA, "Invalid metadata.") from e


async def handle_request(request: UploadRequest, router: Router) -> HandlerResponse:
    """Validate an upload request against its route and sign it.

    Args:
        request: Incoming request, POST with a JSON body
        router: Storage client, default bucket and route table

    Returns:
        200 with ``files`` or ``multipart`` plus ``metadata``, or a 4xx error
    """
    if request.method.upper() != "POST":
        return HandlerResponse(
            status_code=405,
            body={"error": {"type": "invalid_request", "message": "Method not allowed."}},
            headers={"content-type": "application/json", "allow": "POST"},
        )

    try:
        raw_body = await request.json()
    except ValueError:
        return _error(UploadError(UploadErrorType.INVALID_REQUEST, "Invalid JSON body."))

    try:
        body = UploadRequestBody.model_validate(raw_body)
    except ValidationError:
        return _error(
            UploadError(UploadErrorType.INVALID_REQUEST, "Invalid file upload schema.")
        )

    route = router.get_route(body.route)
    if route is None:
        return _error(
            UploadError(UploadErrorType.INVALID_REQUEST, "Upload route not found.", 404)
        )

    token = upload_route_context.set(body.route)
    try:
        validate_files(body.files, route)
        client_metadata = _validate_client_metadata(route, body.metadata)

        handler = handle_multipart_files if route.multipart else handle_files
        try:
            result = await handler(request, router, route, body.files, client_metadata)
        except RejectUpload as e:
            raise UploadError(UploadErrorType.REJECTED, e.message) from e

    except UploadError as e:
        logger.info(f"Upload request refused: type={e.type.value}, message={e.message}")
        return _error(e)
    finally:
        upload_route_context.reset(token)

    payload = result.model_dump(by_alias=True, exclude_none=True, mode="json")
    # hook metadata is returned as-is, including null values
    payload["metadata"] = result.metadata
    return HandlerResponse(status_code=200, body=payload)
