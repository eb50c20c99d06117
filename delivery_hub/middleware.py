"""
FastAPI middleware for request correlation.
"""

import logging
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

logger = logging.getLogger(__name__)


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Adds a unique request ID to each request.

    The ID is available in request.state.request_id and returned in the
    X-Request-ID header. A caller-supplied X-Request-ID is kept so ids can
    be followed across the gateway.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        logger.debug("%s %s -> %s [%s]", request.method, request.url.path, response.status_code, request_id)
        return response
