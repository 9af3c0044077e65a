"""StealthDetect configuration system using Pydantic Settings."""

from __future__ import annotations

import platform as _platform
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _detect_platform() -> str:
    return _platform.system().lower() or "unknown"


class StealthDetectConfig(BaseSettings):
    """Main configuration class. Loads from .env file and environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # App
    app_name: str = "STEALTHDETECT"
    debug: bool = False
    host: str = "127.0.0.1"
    port: int = 8000
    cors_origins: str = "http://localhost:5173,http://127.0.0.1:5173"

    # Logging
    log_dir: str = "logs"
    log_max_bytes: int = 10_000_000
    log_backup_count: int = 5

    # Capability selection
    platform: str = Field(default="", validate_default=True)  # empty -> detected
    native_platform: str = "android"

    # Synthetic generator
    synthetic_min_delay: float = 1.0  # seconds
    synthetic_max_delay: float = 3.0  # seconds, exclusive
    synthetic_indicator_ratio: float = 0.15
    synthetic_connection_ratio: float = 0.3
    synthetic_tcp_ratio: float = 0.8
    dns_server: str = "8.8.8.8"

    # Native capture
    dns_dedup_window: float = 5.0  # seconds; 0 disables suppression

    # Indicators
    indicator_feed_path: Optional[str] = None

    # Traffic monitor
    monitor_max_events: int = 100
    monitor_max_threats: int = 50

    # WebSocket
    ws_max_connections: int = 20
    ws_queue_size: int = 100
    ws_heartbeat_interval: int = 30  # seconds

    @field_validator("platform")
    @classmethod
    def normalize_platform(cls, v: str) -> str:
        return v.strip().lower() or _detect_platform()

    @field_validator("native_platform")
    @classmethod
    def normalize_native_platform(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator(
        "synthetic_indicator_ratio",
        "synthetic_connection_ratio",
        "synthetic_tcp_ratio",
    )
    @classmethod
    def validate_ratio(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"ratio must be between 0 and 1, got {v}")
        return v

    @model_validator(mode="after")
    def validate_delays(self) -> "StealthDetectConfig":
        if self.synthetic_min_delay < 0:
            raise ValueError("synthetic_min_delay must not be negative")
        if self.synthetic_min_delay > self.synthetic_max_delay:
            raise ValueError("synthetic_min_delay must not exceed synthetic_max_delay")
        return self

    @property
    def base_dir(self) -> Path:
        return Path(__file__).resolve().parent.parent


def get_config() -> StealthDetectConfig:
    """Factory function to create config instance."""
    return StealthDetectConfig()
