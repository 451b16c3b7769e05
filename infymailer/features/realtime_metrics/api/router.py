"""
Real-time metrics routes.

HTTP endpoints the tracking side of the platform uses to feed opens,
clicks and bulk counter updates into the live stream, plus the WebSocket
endpoint dashboards subscribe to. The WebSocket path is configurable, so
init_realtime_metrics registers metrics_websocket on the app directly.
"""

from fastapi import APIRouter, Depends, HTTPException, WebSocket, status
from pydantic import BaseModel, Field

from infymailer.features.realtime_metrics.domain import (
    InvalidHourError,
    MetricsPatch,
    MetricsUpdateMessage,
)
from infymailer.features.realtime_metrics.services.metrics_service import (
    RealtimeMetricsService,
    get_realtime_metrics_service,
)
from infymailer.features.realtime_metrics.services.simulator import NullSimulator
from infymailer.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/metrics/realtime", tags=["realtime-metrics"])


class TrackingEventRequest(BaseModel):
    """Request body for a single open or click."""

    hour: str | None = Field(
        default=None, description='Hourly bucket such as "5:00"; defaults to the current hour'
    )


class RealtimeStatsResponse(BaseModel):
    subscribers: int
    messages_published: int
    simulator_enabled: bool
    simulator_running: bool
    simulator_ticks: int
    last_updated_ms: int | None


def _snapshot_response(message: MetricsUpdateMessage) -> dict:
    return message.model_dump(by_alias=True)


@router.get("")
async def get_realtime_snapshot(
    service: RealtimeMetricsService = Depends(get_realtime_metrics_service),
) -> dict:
    """Current full snapshot, in the same shape as the WebSocket message."""
    return _snapshot_response(service.snapshot_message())


@router.post("/opens")
async def record_open_event(
    body: TrackingEventRequest | None = None,
    service: RealtimeMetricsService = Depends(get_realtime_metrics_service),
) -> dict:
    hour = body.hour if body else None
    try:
        return _snapshot_response(service.record_open(hour))
    except InvalidHourError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except Exception as e:
        logger.error("Error recording open", hour=hour, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to record open"
        )


@router.post("/clicks")
async def record_click_event(
    body: TrackingEventRequest | None = None,
    service: RealtimeMetricsService = Depends(get_realtime_metrics_service),
) -> dict:
    hour = body.hour if body else None
    try:
        return _snapshot_response(service.record_click(hour))
    except InvalidHourError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except Exception as e:
        logger.error("Error recording click", hour=hour, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to record click"
        )


@router.patch("")
async def patch_metrics(
    patch: MetricsPatch,
    service: RealtimeMetricsService = Depends(get_realtime_metrics_service),
) -> dict:
    """Merge the supplied counters into the live snapshot."""
    try:
        return _snapshot_response(service.update_metrics(patch))
    except Exception as e:
        logger.error("Error updating metrics", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update metrics"
        )


@router.get("/stats", response_model=RealtimeStatsResponse)
async def get_realtime_stats(
    service: RealtimeMetricsService = Depends(get_realtime_metrics_service),
):
    return RealtimeStatsResponse(**service.stats())


@router.post("/simulator/start", response_model=RealtimeStatsResponse)
async def start_simulator(
    service: RealtimeMetricsService = Depends(get_realtime_metrics_service),
):
    if isinstance(service.simulator, NullSimulator):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Metrics simulator is disabled"
        )

    service.simulator.start()
    return RealtimeStatsResponse(**service.stats())


@router.post("/simulator/stop", response_model=RealtimeStatsResponse)
async def stop_simulator(
    service: RealtimeMetricsService = Depends(get_realtime_metrics_service),
):
    await service.simulator.stop()
    return RealtimeStatsResponse(**service.stats())


async def metrics_websocket(
    websocket: WebSocket,
    service: RealtimeMetricsService = Depends(get_realtime_metrics_service),
) -> None:
    """Subscribe to full snapshot pushes on every metrics change."""
    await service.serve(websocket)
