"""
Application entry point with real-time metrics lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from infymailer import __version__
from infymailer.config import settings
from infymailer.features.realtime_metrics import RealtimeMetricsService, init_realtime_metrics
from infymailer.infrastructure.observability.logging import get_logger, log_request, setup_logging
from infymailer.routes import health

# Setup logging before creating the app
setup_logging(log_level=settings.LOG_LEVEL, json_logs=settings.environment != "development")
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the metrics stream on startup and release subscribers on shutdown."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    service: RealtimeMetricsService = app.state.realtime_metrics
    try:
        service.start()
    except Exception as e:
        logger.error("Failed to start real-time metrics", error=str(e))
        raise

    logger.info("All services initialized successfully", **service.stats())

    yield

    logger.info("Application shutting down")
    try:
        await service.shutdown()
    except Exception as e:
        logger.error("Error shutting down real-time metrics", error=str(e))


def create_app(metrics_service: RealtimeMetricsService | None = None) -> FastAPI:
    application = FastAPI(
        title="InfyMailer Real-Time Metrics",
        description="Live email engagement metrics pushed over WebSocket",
        version=__version__,
        lifespan=lifespan,
    )

    application.include_router(health.router)
    init_realtime_metrics(application, service=metrics_service)

    @application.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log HTTP requests with timing."""
        start_time = time.time()
        response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        log_request(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(process_time, 2),
        )
        return response

    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
