from pathlib import Path
from typing import Dict, List

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    DB_URI: str = "sqlite:///./solar_guardian.db"
    CORS_ORIGINS: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"
    # Live status: online threshold doubles as the history bucket width
    DEVICE_ONLINE_THRESHOLD_SECONDS: int = 30
    HISTORY_MINUTES: int = 30
    MIN_HEALTHY_PANEL_VOLTAGE: float = 6.0
    MIN_WARNING_PANEL_VOLTAGE: float = 4.5
    # Each ESP32 reads one series string of panels
    DEVICE_PANEL_MAP: Dict[str, List[str]] = {
        "ESP_01": ["PNL-A0101", "PNL-A0102", "PNL-A0103"],
        "ESP_02": ["PNL-A0201", "PNL-A0202", "PNL-A0203"],
        "ESP_03": ["PNL-A0301", "PNL-A0302", "PNL-A0303"],
    }
    # Raspberry Pi vision results
    PI_SAVE_DIR: str = "./received_from_pi"
    PI_IMAGES_URL_PREFIX: str = "/api/pi-images"
    PI_RESULTS_BACKLOG: int = 50
    SEED_PANELS: bool = True
    DEFAULT_PANEL_MAX_OUTPUT: float = 400.0

    model_config = SettingsConfigDict(
        env_file=[
            Path(__file__).resolve().parents[2] / ".env",
            Path(".env"),
        ],
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _check_thresholds(self):
        if self.MIN_WARNING_PANEL_VOLTAGE <= 0:
            raise ValueError("MIN_WARNING_PANEL_VOLTAGE must be positive")
        if self.MIN_HEALTHY_PANEL_VOLTAGE <= self.MIN_WARNING_PANEL_VOLTAGE:
            raise ValueError("MIN_HEALTHY_PANEL_VOLTAGE must be greater than MIN_WARNING_PANEL_VOLTAGE")
        if self.DEVICE_ONLINE_THRESHOLD_SECONDS <= 0 or self.HISTORY_MINUTES <= 0:
            raise ValueError("online threshold and history window must be positive")
        if self.PI_RESULTS_BACKLOG <= 0:
            raise ValueError("PI_RESULTS_BACKLOG must be positive")
        return self


settings = Settings()
