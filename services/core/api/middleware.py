"""
API Middleware Module
Request logging and CORS
"""
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
import time
import uuid

from config import ALLOWED_ORIGINS
from logging_config import bind_request_context, clear_request_context, http_request_summary


def add_cors_middleware(app):
    """
    Register CORS using ALLOWED_ORIGINS from config.
    Actor headers must be allowed for the UI to identify itself.
    """
    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-Actor-Id", "X-Actor-Role", "X-Request-Id"],
        expose_headers=["X-Process-Time", "X-Request-Id"]
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Binds a request id into the logging context and logs one summary line per request"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-Id") or uuid.uuid4().hex
        bind_request_context(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            actor_id=request.headers.get("X-Actor-Id")
        )
        start_time = time.time()
        try:
            response = await call_next(request)

            process_time = time.time() - start_time
            http_request_summary(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(process_time * 1000, 2)
            )
        finally:
            clear_request_context()

        response.headers["X-Process-Time"] = str(process_time)
        response.headers["X-Request-Id"] = request_id
        return response
