"""
Access Logging Middleware

Logs every API request through the custom logger and tags the response with
an X-Request-ID for correlation. Requests slower than the threshold are also
reported at the "slow" level.
"""

import time
import uuid
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from household_auth.helpers.getters import get_client_ip
from household_auth.logging import get_logger

logger = get_logger("access")


class AccessLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log all API access.

    Captures:
    - User context (user_id, when the route authenticated one)
    - Request details (path, method, IP, user agent)
    - Performance (duration in seconds)
    """

    def __init__(self, app: ASGIApp, enabled: bool = True, slow_threshold: float = 1.0):
        """
        Args:
            app: FastAPI application
            enabled: Whether logging is enabled (can be disabled in tests)
            slow_threshold: Seconds after which a request is reported as slow
        """
        super().__init__(app)
        self.enabled = enabled
        self.slow_threshold = slow_threshold

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        # Skip health check and docs
        if not self.enabled or request.url.path in ["/", "/health", "/docs", "/openapi.json"]:
            return await call_next(request)

        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = round(time.perf_counter() - start_time, 4)

        # set by get_current_user on authenticated routes
        user = getattr(request.state, "user", None)

        logger.request(
            "API request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=duration,
            request_id=request_id,
            user_id=user.id if user else None,
            ip=get_client_ip(request),
            user_agent=request.headers.get("user-agent", ""),
        )
        if duration > self.slow_threshold:
            logger.slow(
                "Slow request",
                duration=duration,
                threshold=self.slow_threshold,
                path=request.url.path,
                request_id=request_id,
            )

        response.headers["X-Request-ID"] = request_id
        return response
