"""Process configuration loaded from environment variables."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings

from sensorsync.pipeline.sync.coordinator import SyncRole


class Settings(BaseSettings):
    """All configuration is loaded from ``SENSORSYNC_*`` env vars (or .env file).

    Pipeline tuning (schedule, retention, synthetic ranges) lives in
    ``pipeline_config.yaml`` instead; see ``sensorsync.pipeline.config_loader``.
    """

    # --- App ---
    app_name: str = "sensorsync"
    app_version: str = "0.1.0"
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Role ---
    role: SyncRole = SyncRole.COMPANION  # origin collects and sends, companion ingests

    # --- Storage ---
    data_dir: Path = Path("data")
    db_path: Path | None = None  # defaults to <data_dir>/sensorsync.db

    # --- Transport ---
    companion_url: str = "http://localhost:8000"
    channel: str = "/sensor-data"
    transport_timeout_seconds: float = 30.0

    # --- Collection ---
    sensor_permission_granted: bool = True

    # --- Background tasks ---
    enable_scheduler: bool = True
    pipeline_config_path: Path | None = None  # override the bundled YAML

    model_config = {"env_prefix": "SENSORSYNC_", "env_file": ".env", "env_file_encoding": "utf-8"}

    @property
    def sensor_log_dir(self) -> Path:
        return self.data_dir / "sensor_data"

    @property
    def outbox_dir(self) -> Path:
        return self.data_dir / "outbox"

    @property
    def inbox_dir(self) -> Path:
        return self.data_dir / "downloads" / "sensordata"

    @property
    def work_dir(self) -> Path:
        return self.data_dir / "work"

    @property
    def database_path(self) -> Path:
        return self.db_path or self.data_dir / "sensorsync.db"


@lru_cache
def get_settings() -> Settings:
    return Settings()
