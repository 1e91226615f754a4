from pydantic import BaseModel, Field, field_validator
from typing import Literal, Optional, List, Union, get_args
from datetime import datetime

PanelStatus = Literal["healthy", "warning", "fault", "offline"]
ScanSeverity = Literal["CRITICAL", "HIGH", "MODERATE", "LOW"]
ScanStatus = Literal["pending", "processed", "archived"]
DetectionStatus = Literal["CLEAN", "DUSTY", "FAULTY", "UNKNOWN"]
ReportPriority = Literal["HIGH", "MEDIUM", "NORMAL"]


def _normalize(value, allowed, fallback):
    """Upper-case a free-form enum value; anything outside ``allowed`` becomes ``fallback``."""
    if value is None:
        return None
    text = str(value).strip().upper()
    return text if text in get_args(allowed) else fallback


class SensorReadingIn(BaseModel):
    device_id: str
    voltage: float; current: float; power: float
    timestamp: Optional[datetime] = None

class DeviceOut(BaseModel):
    id: int
    device_id: str
    last_seen_at: Optional[datetime]
    latest_voltage: Optional[float]; latest_current_ma: Optional[float]; latest_power_mw: Optional[float]
    class Config: from_attributes = True

class ReadingOut(BaseModel):
    id: int
    device_ref_id: int
    recorded_at: datetime
    voltage: float; current_ma: float; power_mw: float
    class Config: from_attributes = True

class PanelOut(BaseModel):
    id: int; panel_id: str; zone: str; row: int; column: int
    max_output: float; current_output: float; efficiency: float; status: str
    temperature: Optional[float] = None
    inverter_group: Optional[str] = None
    string_id: Optional[str] = None
    last_checked: Optional[datetime] = None
    class Config: from_attributes = True

# Raspberry Pi vision payload

class ThermalBlock(BaseModel):
    min_temp: Optional[float] = None
    max_temp: Optional[float] = None
    mean_temp: Optional[float] = None
    delta: Optional[float] = None
    risk_score: Optional[float] = None
    severity: Optional[ScanSeverity] = None
    fault: Optional[str] = None
    baseline_delta: Optional[float] = None

    # unknown severities fall back to the health-score mapping
    @field_validator("severity", mode="before")
    @classmethod
    def _severity(cls, v): return _normalize(v, ScanSeverity, None)

class PiReport(BaseModel):
    health_score: Optional[float] = None
    priority: Optional[ReportPriority] = None
    recommendation: Optional[str] = None
    timeframe: Optional[str] = None
    summary: Optional[str] = None
    root_cause: Optional[str] = None
    impact_assessment: Optional[str] = None
    source: Optional[str] = None
    baseline_aware: Optional[bool] = None
    deviation_from_baseline: Optional[str] = None
    genai_insights: Optional[str] = None

    @field_validator("priority", mode="before")
    @classmethod
    def _priority(cls, v): return _normalize(v, ReportPriority, "NORMAL")

class RgbStats(BaseModel):
    total: Optional[int] = None
    clean: Optional[int] = None
    dusty: Optional[int] = None

class PanelCropIn(BaseModel):
    panel_number: Optional[str] = None
    status: Optional[DetectionStatus] = None
    has_dust: Optional[bool] = None
    image_b64: Optional[str] = None
    thermal_image_b64: Optional[str] = None
    x1: Optional[float] = None; y1: Optional[float] = None
    x2: Optional[float] = None; y2: Optional[float] = None

    @field_validator("status", mode="before")
    @classmethod
    def _status(cls, v): return _normalize(v, DetectionStatus, "UNKNOWN")

class PiAnalysisResultIn(BaseModel):
    capture_id: Optional[Union[str, int]] = None
    timestamp: Optional[str] = None
    report: Optional[PiReport] = None
    rgb_stats: Optional[RgbStats] = None
    frame_b64: Optional[str] = None
    thermal_b64: Optional[str] = None
    thermal: Optional[ThermalBlock] = None
    # Older Pi firmware sends the same block under this key
    thermal_stats: Optional[ThermalBlock] = None
    panel_crops: List[PanelCropIn] = Field(default_factory=list)
    device_id: Optional[str] = None
    device_name: Optional[str] = None

class ScanAck(BaseModel):
    success: bool
    scanId: Optional[str] = None
    error: Optional[str] = None

class PanelDetectionOut(BaseModel):
    id: int; scan_id: str; panel_number: str; status: str
    x1: float; y1: float; x2: float; y2: float
    crop_image_url: Optional[str]; thermal_crop_image_url: Optional[str]
    fault_type: Optional[str]; confidence: Optional[float]
    class Config: from_attributes = True

class ScanOut(BaseModel):
    id: str
    capture_id: Optional[str]
    timestamp: datetime
    priority: str
    status: str
    risk_score: Optional[float]
    severity: Optional[str]
    thermal_min_temp: Optional[float]; thermal_max_temp: Optional[float]
    thermal_mean_temp: Optional[float]; thermal_delta: Optional[float]
    thermal_image_url: Optional[str]; rgb_image_url: Optional[str]
    dusty_panel_count: int; clean_panel_count: int; total_panels: int
    device_id: Optional[str]; device_name: Optional[str]
    ai_health_score: Optional[int]
    ai_recommendation: Optional[str]; ai_summary: Optional[str]
    ai_root_cause: Optional[str]; ai_impact_assessment: Optional[str]
    ai_timeframe: Optional[str]; ai_source: Optional[str]
    ai_baseline_aware: Optional[bool]
    ai_deviation_from_baseline: Optional[str]; ai_genai_insights: Optional[str]
    created_at: datetime; updated_at: datetime
    panel_detections: List[PanelDetectionOut] = []
    class Config: from_attributes = True

class ScanStatusUpdate(BaseModel):
    status: ScanStatus
