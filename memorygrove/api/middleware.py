"""
FastAPI middleware for request tracking.

Assigns or propagates an X-Request-ID per request, binds it to the
logging context, and logs each request with its duration.
"""

import logging
import time
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from memorygrove.common.logging_config import clear_request_id, set_request_id

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Adds X-Request-ID to responses and logs request/response pairs."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = set_request_id(request.headers.get(REQUEST_ID_HEADER) or None)
        start_time = time.time()

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={"extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "error": str(e),
                    "error_type": type(e).__name__,
                }},
            )
            raise
        finally:
            clear_request_id()

        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            f"{request.method} {request.url.path} {response.status_code}",
            extra={"extra_fields": {
                "status_code": response.status_code,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
                "request_id": request_id,
            }},
        )
        return response
