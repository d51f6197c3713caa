"""Main FastAPI application for the order lifecycle coordinator."""
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from order_coordinator.api.v1.api import api_router
from order_coordinator.config.database import test_supabase_connection
from order_coordinator.config.logging import get_logger, setup_logging
from order_coordinator.config.settings import settings
from order_coordinator.core.errors import (
    CoordinatorUnavailable,
    DuplicatePromoCode,
    OrderNotFound,
    PaymentNotFound,
    PromoCodeNotFound,
)
from order_coordinator.core.middleware import (
    CorrelationIdMiddleware,
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from order_coordinator.services.orders.coordinator import OrderCoordinator

setup_logging()
logger = get_logger(__name__)


def create_app(coordinator: Optional[OrderCoordinator] = None) -> FastAPI:
    """
    Build the application around one coordinator instance.

    Tests pass their own coordinator; otherwise one is built from settings.
    """
    is_prod = settings.ENVIRONMENT.lower() == "production"
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        openapi_url=None if is_prod else f"{settings.API_V1_STR}/openapi.json",
        docs_url=None if is_prod else "/docs",
        redoc_url=None if is_prod else "/redoc",
    )
    app.state.coordinator = coordinator or OrderCoordinator.from_settings(settings)

    # Add middleware in order (last added = first executed)
    # CORSMiddleware goes last so it answers preflight requests first.
    # The request ID is assigned before the access log reads it.
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(OrderNotFound)
    @app.exception_handler(PaymentNotFound)
    @app.exception_handler(PromoCodeNotFound)
    async def not_found_handler(request: Request, exc: Exception):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(DuplicatePromoCode)
    async def duplicate_handler(request: Request, exc: DuplicatePromoCode):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(CoordinatorUnavailable)
    async def unavailable_handler(request: Request, exc: CoordinatorUnavailable):
        logger.error(f"Coordinator unavailable: {exc}")
        return JSONResponse(
            status_code=503,
            content={"detail": "Service temporarily unavailable, retry the request"},
            headers={"Retry-After": str(exc.retry_after_seconds)},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Catch all unhandled exceptions."""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"}
        )

    @app.get("/")
    async def root():
        return {
            "name": settings.PROJECT_NAME,
            "version": settings.VERSION,
            "docs": "/docs" if not is_prod else None,
            "environment": settings.ENVIRONMENT
        }

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "environment": settings.ENVIRONMENT,
            "version": settings.VERSION,
            "notification_backend": settings.NOTIFICATION_BACKEND,
            "locks_in_use": len(app.state.coordinator.locks),
        }

    app.include_router(api_router, prefix=settings.API_V1_STR)

    @app.on_event("startup")
    async def startup_event():
        logger.info(f"Starting {settings.PROJECT_NAME} v{settings.VERSION}")
        logger.info(f"Environment: {settings.ENVIRONMENT}")
        logger.info(f"Notification backend: {settings.NOTIFICATION_BACKEND}")
        if settings.SUPABASE_MIRROR_ENABLED and not test_supabase_connection():
            logger.warning("Supabase mirror enabled but unreachable; rows will not be mirrored")

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.coordinator.close()
        logger.info("Shutdown complete")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "order_coordinator.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
    )
