from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # =================================================================
    # REAL-TIME METRICS SETTINGS
    # =================================================================
    METRICS_WS_PATH: str = "/metrics-ws"
    METRICS_SIMULATOR_ENABLED: bool = True
    METRICS_SIMULATOR_INTERVAL_SECONDS: float = 3.0
    METRICS_SIMULATOR_REQUIRE_SUBSCRIBERS: bool = True
    METRICS_SUBSCRIBER_QUEUE_SIZE: int = 32
    METRICS_SEND_TIMEOUT_SECONDS: float = 5.0

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_realtime_metrics_config(self) -> dict:
        """
        Get real-time metrics configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "ws_path": self.METRICS_WS_PATH,
            "simulator_enabled": self.METRICS_SIMULATOR_ENABLED,
            "simulator_interval_seconds": self.METRICS_SIMULATOR_INTERVAL_SECONDS,
            "simulator_require_subscribers": self.METRICS_SIMULATOR_REQUIRE_SUBSCRIBERS,
            "subscriber_queue_size": max(1, self.METRICS_SUBSCRIBER_QUEUE_SIZE),
            "send_timeout_seconds": self.METRICS_SEND_TIMEOUT_SECONDS,
        }

        if self.environment == "test":
            # Tests drive activity explicitly
            config["simulator_enabled"] = False

        return config


settings = Settings()
