"""FastAPI application factory"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from merchant_crm.api.middleware import RequestIDMiddleware, MetricsMiddleware
from merchant_crm.api.v1 import activities, merchants, onboarding, payouts, pipeline
from merchant_crm.config import Settings, settings as default_settings
from merchant_crm.domain.exceptions import DomainException
from merchant_crm.infrastructure.database.session import create_session_factory
from merchant_crm.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(default_settings.log_level)


def _error_body(code: str, message: str, details=None) -> dict:
    return {"success": False, "error": code, "message": message, "details": details}


async def domain_exception_handler(request: Request, exc: DomainException) -> JSONResponse:
    """Map domain errors to their HTTP status with a structured body"""
    level = logging.ERROR if exc.status_code >= 500 else logging.INFO
    logging.log(
        level,
        f"{exc.code}: {exc.message}",
        extra={"request_id": getattr(request.state, "request_id", "unknown"), "path": request.url.path},
    )
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message, exc.details))


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed requests are reported as 400 with one entry per offending field"""
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part not in ("body", "query", "path", "header")),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(status_code=400, content=_error_body("ValidationError", "Validation error", errors))


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected is logged and reported as a bare 500"""
    logging.error(
        f"Unexpected error: {exc}",
        exc_info=exc,
        extra={"request_id": getattr(request.state, "request_id", "unknown"), "path": request.url.path},
    )
    return JSONResponse(status_code=500, content=_error_body("InternalError", "Internal server error"))


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or default_settings

    app = FastAPI(
        title="Merchant CRM",
        description="Merchant sales pipeline, onboarding and rep payout service",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.settings = settings
    app.state.session_factory = create_session_factory(settings)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    app.add_exception_handler(DomainException, domain_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(merchants.router, tags=["merchants"])
    app.include_router(pipeline.router, tags=["pipeline"])
    app.include_router(onboarding.router, tags=["onboarding"])
    app.include_router(payouts.router, tags=["payouts"])
    app.include_router(activities.router, tags=["activities"])

    return app


app = create_app()
