"""
Middleware for clouddisk-py
"""

import logging
import time
from typing import Callable, Optional
from fastapi import FastAPI, Request, Response, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .models import ApiResponse, ResponseCode
from .metrics import metrics_manager

logger = logging.getLogger(__name__)


def get_client_ip(request: Request) -> str:
    """Client address, preferring the first X-Forwarded-For hop"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"


class AccessLogMiddleware(BaseHTTPMiddleware):
    """Access logging middleware"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        client_ip = get_client_ip(request)

        try:
            response = await call_next(request)
        except Exception as e:
            duration = time.time() - start_time
            self._log_access(request, None, duration, client_ip, error=type(e).__name__)
            metrics_manager.record_response(500, duration)
            raise

        # Streaming bodies are still being sent; this measures time to headers
        duration = time.time() - start_time
        self._log_access(request, response, duration, client_ip)
        metrics_manager.record_response(response.status_code, duration)
        return response

    def _log_access(
        self,
        request: Request,
        response: Optional[Response],
        duration: float,
        client_ip: str,
        error: Optional[str] = None
    ):
        """Log access information"""

        status_code = response.status_code if response else 500
        content_length = response.headers.get("content-length", "-") if response else "-"

        # The query string may carry the shared secret, so only the path is logged
        log_data = {
            "method": request.method,
            "path": str(request.url.path),
            "status": status_code,
            "size": content_length,
            "range": request.headers.get("range", "-"),
            "duration": round(duration * 1000, 2),  # milliseconds
            "ip": client_ip,
            "user_agent": request.headers.get("user-agent", "-"),
        }

        if error:
            log_data["error"] = error

        # Log level based on status code
        if status_code >= 500:
            logger.error(f"ACCESS {log_data}")
        elif status_code >= 400:
            logger.warning(f"ACCESS {log_data}")
        else:
            logger.info(f"ACCESS {log_data}")


class ExceptionHandlerMiddleware(BaseHTTPMiddleware):
    """Global exception handler middleware"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)

        except HTTPException:
            # Let FastAPI handle HTTP exceptions
            raise

        except Exception as e:
            # Details go to the log only; they may contain storage paths
            logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {e}")

            error_response = ApiResponse(
                code=ResponseCode.INTERNAL_ERROR.value,
                msg="Internal server error",
                data=None
            )

            return JSONResponse(
                status_code=500,
                content=error_response.to_dict()
            )


class RequestMetricsMiddleware(BaseHTTPMiddleware):
    """Request metrics collection middleware"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        with metrics_manager.request_context(request.method):
            return await call_next(request)


def setup_middleware(app: FastAPI):
    """Setup all middleware for the application"""

    # Innermost first: exceptions become 500 envelopes before they are logged
    app.add_middleware(ExceptionHandlerMiddleware)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestMetricsMiddleware)

    logger.info("Middleware setup complete")
