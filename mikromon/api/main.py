"""
FastAPI application for the MikroTik monitor.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from config.settings import AppSettings, get_settings
from mikromon.connections.manager import ClientFactory
from mikromon.errors import (
    DeviceConnectionError,
    InputValidationError,
    MonitorError,
    PredictorError,
    ResourceNotFoundError,
    StorageError,
)
from mikromon.ids.predictor import Predictor
from mikromon.storage.database import close_db, create_engine, init_db
from mikromon.utils.logging import get_logger, setup_logging

from .dependencies import build_runtime
from .middleware import RequestIdMiddleware, request_timing_middleware
from .routes import alerts, devices, health, scheduler, security, websocket

# Initialize logging
setup_logging()
logger = get_logger(__name__)

API_PREFIX = "/api"


def _status_for(exc: MonitorError) -> int:
    if isinstance(exc, ResourceNotFoundError):
        return 404
    if isinstance(exc, InputValidationError):
        return 400
    if isinstance(exc, DeviceConnectionError):
        return 502
    if isinstance(exc, PredictorError):
        return 503
    return 500


def create_app(
    settings: AppSettings | None = None,
    predictor: Predictor | None = None,
    client_factory: ClientFactory | None = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings, defaults to the environment
        predictor: Overrides the predictor built from IDS settings
        client_factory: Overrides how router clients are created
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup and shutdown."""
        logger.info("Starting MikroTik monitor", env=settings.env)

        engine = create_engine(settings.database)
        try:
            await init_db(engine)
        except Exception as e:
            logger.error("Failed to initialize database", error=str(e))
            await close_db(engine)
            raise

        runtime = build_runtime(
            settings, engine, predictor=predictor, client_factory=client_factory
        )
        app.state.runtime = runtime
        await runtime.start()
        logger.info("MikroTik monitor started successfully")

        yield

        logger.info("Shutting down MikroTik monitor")
        await runtime.stop()
        await close_db(engine)
        logger.info("MikroTik monitor shutdown complete")

    app = FastAPI(
        title="MikroTik Monitor",
        description="Network monitoring backend for MikroTik routers",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.is_development else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)
    app.middleware("http")(request_timing_middleware)

    # Exception handlers
    @app.exception_handler(MonitorError)
    async def monitor_error_handler(request: Request, exc: MonitorError) -> JSONResponse:
        status_code = _status_for(exc)
        if status_code >= 500:
            logger.error(
                "Request failed",
                path=request.url.path,
                error_code=exc.error_code,
                error=exc.message,
            )
        return JSONResponse(status_code=status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        error = InputValidationError(
            "Invalid request", {"errors": jsonable_errors(exc)}
        )
        return JSONResponse(status_code=400, content=error.to_dict())

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
        logger.exception("Database error", path=request.url.path)
        error = StorageError("Database operation failed")
        return JSONResponse(status_code=500, content=error.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler."""
        logger.exception("Unhandled exception", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=500,
            content={
                "error": MonitorError.error_code,
                "message": "Internal server error",
                "context": {},
            },
        )

    # Prometheus metrics endpoint
    @app.get("/metrics", include_in_schema=False)
    async def prometheus_metrics(request: Request) -> Response:
        """Prometheus metrics endpoint."""
        metrics = request.app.state.runtime.metrics
        return Response(content=metrics.generate_metrics(), media_type=metrics.get_content_type())

    # Include routers
    app.include_router(health.router)
    app.include_router(devices.router, prefix=API_PREFIX)
    app.include_router(scheduler.router, prefix=API_PREFIX)
    app.include_router(security.router, prefix=API_PREFIX)
    app.include_router(alerts.router, prefix=API_PREFIX)
    app.include_router(websocket.router)

    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, str]]:
    """Reduce pydantic error details to location and message."""
    return [
        {"loc": ".".join(str(part) for part in err.get("loc", ())), "msg": str(err.get("msg", ""))}
        for err in exc.errors()
    ]


app = create_app()


def main() -> None:
    """Entry point for running the application."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "mikromon.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
    )


if __name__ == "__main__":
    main()
