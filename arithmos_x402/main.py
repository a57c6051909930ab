"""
Main FastAPI application for the Arithmos x402 API.

Builds the business API and the separate metrics application, wiring the
shared cache, metrics collector, payment gate and scanners into app state.
"""

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import logging
import structlog
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from . import __version__
from .config import Settings, get_settings
from .pipeline import RequestPipeline, build_paid_routes
from .routes import router
from .scanners import build_scanners
from .services.cache import ExpiringCache
from .services.metrics import MetricsCollector
from .services.upstream import Upstreams
from .services.x402_handler import PaymentGate, X402PaymentRequiredError

logger = structlog.get_logger(__name__)


def configure_logging(settings: Settings) -> None:
    """
    Configure structured logging.
    """
    logging.basicConfig(level=settings.log_level, format="%(message)s")

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer() if settings.log_format == "json"
            else structlog.dev.ConsoleRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ============================================================================
# Application Factory
# ============================================================================

def create_app(
    settings: Optional[Settings] = None,
    upstreams: Optional[Upstreams] = None,
    metrics: Optional[MetricsCollector] = None
) -> FastAPI:
    """
    Build the business API.

    Args:
        settings: Application settings; defaults to the environment
        upstreams: Upstream clients; tests inject fakes here
        metrics: Metrics collector shared with the metrics application

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    upstreams = upstreams or Upstreams(settings)
    metrics = metrics or MetricsCollector(window_size=settings.metrics_window_size)

    cache = ExpiringCache(ttl_seconds=settings.cache_ttl_seconds)
    gate = PaymentGate(reject_expired=settings.reject_expired_payments)
    scanners = build_scanners(upstreams, cache)
    pipeline = RequestPipeline(gate, metrics, build_paid_routes(settings, scanners))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Lifespan context manager for startup and shutdown events.

        Runs the cache sweeper and closes the upstream connection pool.
        """
        logger.info(
            "starting_arithmos_x402",
            version=__version__,
            environment=settings.env,
            port=settings.server_port,
            receiver=settings.receiver_address
        )
        cache.start_sweeper(settings.cache_sweep_interval_seconds)

        try:
            logger.info("server_startup_complete")
            yield
        finally:
            logger.info("shutting_down_server")
            await cache.stop_sweeper()
            await upstreams.aclose()
            logger.info("server_shutdown_complete")

    app = FastAPI(
        title="Arithmos x402",
        description=(
            "Pay-per-call blockchain data and security analysis for autonomous agents. "
            "Every /api route is paid with the x402 payment protocol."
        ),
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json"
    )

    app.state.settings = settings
    app.state.cache = cache
    app.state.metrics = metrics
    app.state.gate = gate
    app.state.upstreams = upstreams
    app.state.pipeline = pipeline

    # ========================================================================
    # CORS Middleware
    # ========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ========================================================================
    # Exception Handlers
    # ========================================================================

    @app.exception_handler(X402PaymentRequiredError)
    async def payment_required_handler(request: Request, exc: X402PaymentRequiredError):
        """
        Handle 402 Payment Required with the requirement needed to retry.
        """
        logger.info(
            "payment_required_response",
            endpoint=exc.endpoint,
            amount=exc.requirement.amount,
            rejected=exc.rejected
        )

        return JSONResponse(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            content=exc.detail
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """
        Handle Pydantic validation errors with detailed messages.
        """
        errors = {}
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"] if loc != "body") or "body"
            errors[field] = error["msg"]

        logger.warning(
            "validation_error",
            path=request.url.path,
            errors=errors
        )

        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "error": "validation_error",
                "message": "Invalid request data",
                "details": errors,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """
        Keep routing errors (404, 405) JSON-shaped.
        """
        path = request.url.path
        if exc.status_code == status.HTTP_405_METHOD_NOT_ALLOWED and path in pipeline.routes:
            metrics.record_request(path, str(exc.status_code))

        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "method_not_allowed" if exc.status_code == 405 else "http_error",
                "message": str(exc.detail),
                "timestamp": datetime.utcnow().isoformat() + "Z"
            },
            headers=getattr(exc, "headers", None)
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """
        Handle unexpected errors with generic 500 response.
        """
        logger.error(
            "internal_server_error",
            path=request.url.path,
            error=str(exc),
            exc_info=True
        )

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "error": "internal_error",
                "message": "An internal server error occurred",
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )

    # ========================================================================
    # Routes
    # ========================================================================

    app.include_router(router)

    @app.get(
        "/",
        tags=["System"],
        summary="API Information",
        description="Get basic API information and links to documentation"
    )
    async def root():
        """
        Root endpoint with API information.
        """
        return {
            "service": "arithmos-x402",
            "version": __version__,
            "description": "Pay-per-call blockchain data and security analysis for agents",
            "documentation": {
                "swagger_ui": "/docs",
                "redoc": "/redoc",
                "openapi_schema": "/openapi.json"
            },
            "endpoints": ["/health", "/.well-known/x402", *pipeline.routes],
            "protocol": "x402",
            "pricing": {
                path: f"{route.requirement.amount} {route.requirement.asset}"
                for path, route in pipeline.routes.items()
            }
        }

    # ========================================================================
    # Middleware for Request Logging
    # ========================================================================

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Log all incoming requests and responses.
        """
        logger.info(
            "request_received",
            method=request.method,
            path=request.url.path,
            client=request.client.host if request.client else None
        )

        response = await call_next(request)

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code
        )

        return response

    return app


def create_metrics_app(metrics: MetricsCollector) -> FastAPI:
    """
    Build the metrics application, served on its own listener.
    """
    app = FastAPI(title="Arithmos x402 metrics", docs_url=None, redoc_url=None, openapi_url=None)
    app.state.metrics = metrics

    @app.get("/metrics")
    async def render_metrics() -> Response:
        return Response(
            content=generate_latest(metrics.registry),
            media_type=CONTENT_TYPE_LATEST,
        )

    return app


__all__ = ["create_app", "create_metrics_app", "configure_logging"]
