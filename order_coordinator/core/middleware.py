"""Middleware for request correlation, error handling, access logging and security headers."""
import time
import uuid
import logging
from typing import Callable, Optional
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from order_coordinator.config.settings import settings

logger = logging.getLogger(__name__)


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Propagates `X-Request-ID`, minting one when the upstream gateway did not."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """Turns anything that escaped the exception handlers into a 500 carrying the request ID."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = _request_id(request)
            logger.error(
                f"Unhandled exception on {request.method} {request.url.path}: {exc}",
                exc_info=True,
                extra={"request_id": request_id},
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal server error", "request_id": request_id},
            )


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Access log tagged with the calling actor.

    Role and id come straight from the `X-Actor-*` headers, before any
    validation, so rejected callers show up in the log as they presented
    themselves. Gateway callbacks carry no actor and are logged as such.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.perf_counter()
        context = {
            "request_id": _request_id(request),
            "actor_role": request.headers.get("X-Actor-Role"),
            "actor_id": request.headers.get("X-Actor-Id"),
        }
        caller = f"{context['actor_role']}:{context['actor_id']}" if context["actor_role"] else "anonymous"

        logger.info(f"Request: {request.method} {request.url.path} by {caller}", extra=context)

        response = await call_next(request)

        elapsed = time.perf_counter() - start_time
        log = logger.warning if response.status_code >= 500 else logger.info
        log(
            f"Response: {response.status_code} for {request.method} {request.url.path} "
            f"by {caller} took {elapsed:.3f}s",
            extra={**context, "duration_ms": round(elapsed * 1000, 2)},
        )
        response.headers["X-Process-Time"] = f"{elapsed:.4f}"
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security headers; coordinator responses are never cached by intermediaries."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"
        if settings.ENVIRONMENT.lower() == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
            response.headers["X-Frame-Options"] = "DENY"

        return response
