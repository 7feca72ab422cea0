"""Upload router: storage client, default bucket and named routes."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from directupload.server.route import Route
from directupload.storage.clients import StorageClient


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Router:
    """Everything the request handler needs to authorize uploads.

    Attributes:
        client: Storage endpoint and credentials used for signing
        bucket_name: Default bucket, hooks may override it per request
        routes: Route policies keyed by the name clients send
        http_client: Shared client for server-side storage calls
            (multipart session creation); a short-lived one is used if unset
        clock: Signing time source
    """

    client: StorageClient
    bucket_name: str
    routes: dict[str, Route] = field(default_factory=dict)
    http_client: Optional[httpx.AsyncClient] = None
    clock: Callable[[], datetime] = utcnow

    def __post_init__(self) -> None:
        if not self.bucket_name:
            raise ValueError("bucket_name is required")

    def get_route(self, name: str) -> Optional[Route]:
        return self.routes.get(name)
