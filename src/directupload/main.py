"""Main application entrypoint for the direct upload service."""

import logging
from typing import Optional

from fastapi import FastAPI

from directupload.api.middleware import HTTPErrorLoggingMiddleware
from directupload.api.v1 import routes_health
from directupload.api.v1.routes_upload import create_upload_router
from directupload.core.config import settings
from directupload.core.logging import setup_logging
from directupload.server.route import route
from directupload.server.router import Router
from directupload.storage.clients import build_client_from_settings

logger = logging.getLogger(__name__)


def build_router_from_settings() -> Router:
    """Router with a single route described by the ``UPLOAD_*`` settings.

    Raises:
        StorageConfigError: If the storage settings are incomplete
        ValueError: If the route settings are inconsistent
    """
    multiple_files = settings.UPLOAD_MAX_FILES > 1
    default_route = route(
        multiple_files=multiple_files,
        max_files=settings.UPLOAD_MAX_FILES if multiple_files else None,
        max_file_size=settings.max_file_size_bytes,
        file_types=settings.allowed_file_types,
        multipart=settings.UPLOAD_MULTIPART,
        part_size=settings.part_size_bytes if settings.UPLOAD_MULTIPART else None,
        upload_method=settings.UPLOAD_METHOD.lower(),
    )
    return Router(
        client=build_client_from_settings(),
        bucket_name=settings.S3_BUCKET_NAME,
        routes={settings.UPLOAD_ROUTE_NAME: default_route},
    )


def create_app(router: Optional[Router] = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        router: Upload router to serve; built from settings when omitted

    Returns:
        FastAPI: Configured FastAPI application instance
    """
    setup_logging()

    if router is None:
        router = build_router_from_settings()

    app = FastAPI(
        title=settings.SERVICE_NAME,
        version=settings.SERVICE_VERSION,
    )
    app.add_middleware(HTTPErrorLoggingMiddleware)

    app.include_router(routes_health.router, tags=["health"])
    app.include_router(create_upload_router(router, settings.UPLOAD_API_PATH))

    logger.info(
        f"Serving {len(router.routes)} upload route(s) at {settings.UPLOAD_API_PATH}: "
        f"{', '.join(sorted(router.routes))}"
    )
    return app
