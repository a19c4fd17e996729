"""
Request timing middleware.

Logs every HTTP request through the engine's structured logger and adds
the processing time to the response headers.
"""

import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from rbac_hierarchy.config.logging import engine_logger


class TimingMiddleware(BaseHTTPMiddleware):
    """Middleware to time and log requests."""

    async def dispatch(self, request: Request, call_next):
        """
        Process HTTP request and log its timing.

        Args:
            request: The incoming HTTP request
            call_next: The next middleware/handler in the chain

        Returns:
            Response: The HTTP response with an X-Process-Time header
        """
        start_time = time.time()

        response = await call_next(request)

        process_time = time.time() - start_time

        engine_logger.log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            response_time=round(process_time * 1000, 3),
            client_ip=request.client.host if request.client else None,
        )

        response.headers["X-Process-Time"] = str(round(process_time, 6))

        return response
