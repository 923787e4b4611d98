"""Central configuration for the check-in terminal service."""
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_ENV_FILE = ROOT_DIR / ".env"


# ============================================================
# Nested Configuration Classes
# ============================================================

class ScannerSettings(BaseModel):
    """Scan cycle behaviour."""
    auto_restart: bool = Field(True, description="Start a new scan immediately after reset")
    feedback_duration_seconds: float = Field(2.0, description="How long UI feedback (e.g. 'Copied!') stays visible")


class CameraSettings(BaseModel):
    """Camera capture configuration for the QR engine."""
    camera_id: int = Field(0, description="OpenCV capture device index")
    resolution_width: int = Field(640, description="Camera stream width (pixels)")
    resolution_height: int = Field(480, description="Camera stream height (pixels)")
    fps: int = Field(20, description="Frames sampled per second while scanning")


class PerformanceSettings(BaseModel):
    """Queue tuning."""
    ui_event_queue_size: int = Field(16, description="Max buffered UI events per websocket client")


class Settings(BaseSettings):
    """Environment-driven settings for the terminal."""

    # Check-in service
    checkin_api_url: str = Field("http://localhost:5000", description="Check-in service base URL")
    checkin_timeout_seconds: float = Field(15.0, description="Transport timeout for the check-in call")

    # Controller HTTP Server
    controller_host: str = Field("0.0.0.0", description="Host interface for local FastAPI server")
    controller_port: int = Field(8080, description="Port for FastAPI server")

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_directory: Path = Field(ROOT_DIR / "logs", description="Log directory path")
    log_retention_days: int = Field(14, description="Number of log files to retain")

    # Nested Configuration Objects
    scanner: ScannerSettings = Field(default_factory=ScannerSettings, description="Scan cycle settings")
    camera: CameraSettings = Field(default_factory=CameraSettings, description="Camera hardware settings")
    performance: PerformanceSettings = Field(default_factory=PerformanceSettings, description="Performance tuning")

    @field_validator("checkin_api_url", mode="before")
    @classmethod
    def _normalise_api_url(cls, value: object) -> object:
        if isinstance(value, str):
            parsed = value.strip().rstrip("/")
            if not parsed.lower().startswith(("http://", "https://")):
                raise ValueError("CHECKIN_API_URL must be an http(s) URL")
            return parsed
        return value

    model_config = SettingsConfigDict(
        env_file=str(DEFAULT_ENV_FILE),
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings(override_env_file: Optional[Path] = None) -> Settings:
    """Cached Settings instance; accepts optional env override for tests."""

    if override_env_file:
        return Settings(_env_file=str(override_env_file))
    return Settings()
