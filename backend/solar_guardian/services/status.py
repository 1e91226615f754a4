from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.config import settings

HEALTHY = "healthy"
WARNING = "warning"
FAULT = "fault"
OFFLINE = "offline"
PANEL_STATUSES = (HEALTHY, WARNING, FAULT, OFFLINE)


@dataclass(frozen=True)
class StatusThresholds:
    fault_voltage: float
    healthy_voltage: float

    def __post_init__(self):
        if self.healthy_voltage <= self.fault_voltage:
            raise ValueError("healthy_voltage must be greater than fault_voltage")

    @classmethod
    def from_settings(cls) -> "StatusThresholds":
        return cls(
            fault_voltage=settings.MIN_WARNING_PANEL_VOLTAGE,
            healthy_voltage=settings.MIN_HEALTHY_PANEL_VOLTAGE,
        )


def is_device_online(last_seen_at: Optional[datetime], now: datetime, threshold_seconds: float) -> bool:
    if last_seen_at is None:
        return False
    return (now - last_seen_at).total_seconds() <= threshold_seconds


def per_panel_voltage(total_voltage: float, panel_count: int) -> float:
    # Panels are wired in series behind one sensor
    return total_voltage / (panel_count if panel_count > 0 else 1)


def classify_panel(
    online: bool,
    panel_voltage: Optional[float],
    power: Optional[float],
    thresholds: StatusThresholds,
) -> str:
    if not online:
        return OFFLINE
    if panel_voltage is not None and panel_voltage < thresholds.fault_voltage:
        return FAULT
    if (panel_voltage is not None and panel_voltage < thresholds.healthy_voltage) or (power or 0) <= 0:
        return WARNING
    return HEALTHY
