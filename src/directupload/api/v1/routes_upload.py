"""Upload API route."""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from directupload.server.request_handler import handle_request
from directupload.server.router import Router

logger = logging.getLogger(__name__)

# Every method reaches the handler so non-POST requests get a structured 405
UPLOAD_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE"]


def create_upload_router(upload_router: Router, path: str = "/api/upload") -> APIRouter:
    """Mount the upload request handler on ``path``.

    Args:
        upload_router: Storage client, bucket and routes to serve
        path: URL path of the endpoint

    Returns:
        APIRouter: Router to include in the application
    """
    router = APIRouter(tags=["upload"])

    @router.api_route(path, methods=UPLOAD_METHODS)
    async def upload(request: Request) -> JSONResponse:
        """Authorize direct uploads to storage."""
        response = await handle_request(request, upload_router)
        headers = {k: v for k, v in response.headers.items() if k != "content-type"}
        return JSONResponse(
            status_code=response.status_code, content=response.body, headers=headers
        )

    return router
