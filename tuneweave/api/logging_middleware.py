"""
FastAPI Logging Middleware for Tuneweave

Logs every API request and response with timing, status code and a
request id that is echoed back in the ``X-Request-ID`` header.
"""

import time
import uuid
from typing import Callable, List, Optional

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.logging_config import log_performance, set_request_context

logger = structlog.get_logger("api.middleware")


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all API requests and responses.

    Requests slower than ``slow_request_threshold`` seconds are logged as
    warnings.
    """

    def __init__(
        self,
        app,
        exclude_paths: Optional[List[str]] = None,
        slow_request_threshold: float = 5.0
    ):
        super().__init__(app)
        self.exclude_paths = exclude_paths or ["/health", "/docs", "/openapi.json"]
        self.slow_request_threshold = slow_request_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path in self.exclude_paths:
            return await call_next(request)

        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        set_request_context(request_id=request_id, client=self._get_client_ip(request))

        start_time = time.time()
        logger.info(
            "api_request_start",
            request_id=request_id,
            method=request.method,
            path=request.url.path
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "api_request_error",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
                error_type=type(e).__name__,
                error_message=str(e),
                duration_seconds=round(time.time() - start_time, 4)
            )
            raise

        duration = time.time() - start_time
        logger.info(
            "api_request_complete",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_seconds=round(duration, 4)
        )
        if duration > self.slow_request_threshold:
            logger.warning(
                "slow_request",
                path=request.url.path,
                duration_seconds=round(duration, 4),
                threshold_seconds=self.slow_request_threshold
            )
        log_performance(
            f"{request.method} {request.url.path}",
            duration,
            status_code=response.status_code,
            request_id=request_id
        )

        response.headers["X-Request-ID"] = request_id
        return response

    def _get_client_ip(self, request: Request) -> str:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()
        return request.client.host if request.client else "unknown"
