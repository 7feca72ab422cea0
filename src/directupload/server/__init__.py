"""Upload request handler.

Declare routes with :func:`route`, group them in a :class:`Router` and pass
incoming requests to :func:`handle_request`.
"""

from directupload.server.errors import RejectUpload, UploadError, UploadErrorType
from directupload.server.request_handler import HandlerResponse, handle_request
from directupload.server.route import ObjectInfoOverrides, Route, route
from directupload.server.router import Router

__all__ = [
    "RejectUpload",
    "UploadError",
    "UploadErrorType",
    "HandlerResponse",
    "handle_request",
    "ObjectInfoOverrides",
    "Route",
    "route",
    "Router",
]
