"""Engine configuration, overridable through GEOFENCE_* environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineConfig(BaseSettings):
    """Tunables shared by every engine component."""

    # Loitering delay handed to the backend; the only drive-by filter.
    dwell_delay_seconds: int = Field(default=30, gt=0)
    throttle_window_seconds: int = Field(default=60, gt=0)
    retention_days: int = Field(default=7, gt=0)

    worker_count: int = Field(default=4, gt=0)
    queue_maxsize: int = Field(default=1000, ge=0)

    db_path: str = ":memory:"
    deep_link_scheme: str = "geocue"

    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(
        env_prefix="GEOFENCE_",
        extra="ignore",
    )

    def deep_link_for(self, region_id: str) -> str:
        return f"{self.deep_link_scheme}://notifications/{region_id}"
