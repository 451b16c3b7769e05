class RealtimeMetricsError(Exception):
    """Custom exception for real-time metrics operations."""

    def __init__(self, message: str, operation: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class InvalidHourError(RealtimeMetricsError, ValueError):
    """Hour label does not name one of the 24 hourly buckets."""

    def __init__(self, hour: str):
        super().__init__(
            f"Invalid hour '{hour}': expected 'H:00' with H between 0 and 23",
            operation="resolve_hour",
        )
        self.hour = hour
