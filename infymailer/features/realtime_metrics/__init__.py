"""
Real-time metrics feature package.

Everything behind the live email-metrics stream lives here: the domain
models, the in-memory state, subscriber fan-out, the demo simulator and
the HTTP/WebSocket routes.
"""

from .domain.models import MetricsPatch, MetricsUpdateMessage  # noqa: F401
from .services.metrics_service import (  # noqa: F401
    RealtimeMetricsService,
    get_realtime_metrics_service,
    init_realtime_metrics,
)
from .api.router import router as realtime_metrics_router  # noqa: F401
