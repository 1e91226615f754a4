import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from ..db.session import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class Scan(Base):
    __tablename__ = "solar_scans"

    id = Column(String, primary_key=True, default=_new_id)
    capture_id = Column(String, index=True, nullable=True)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    priority = Column(String, nullable=False, default="NORMAL")
    status = Column(String, nullable=False, default="pending", index=True)
    risk_score = Column(Float, nullable=True)
    severity = Column(String, nullable=True, index=True)

    # Not every capture source provides thermal data
    thermal_min_temp = Column(Float, nullable=True)
    thermal_max_temp = Column(Float, nullable=True)
    thermal_mean_temp = Column(Float, nullable=True)
    thermal_delta = Column(Float, nullable=True)
    thermal_image_url = Column(String, nullable=True)
    rgb_image_url = Column(String, nullable=True)

    dusty_panel_count = Column(Integer, nullable=False, default=0)
    clean_panel_count = Column(Integer, nullable=False, default=0)
    total_panels = Column(Integer, nullable=False, default=0)

    device_id = Column(String, nullable=True)
    device_name = Column(String, nullable=True)

    ai_health_score = Column(Integer, nullable=True)
    ai_recommendation = Column(Text, nullable=True)
    ai_summary = Column(Text, nullable=True)
    ai_root_cause = Column(Text, nullable=True)
    ai_impact_assessment = Column(Text, nullable=True)
    ai_timeframe = Column(String, nullable=True)
    ai_source = Column(String, nullable=True)
    ai_baseline_aware = Column(Boolean, nullable=True)
    ai_deviation_from_baseline = Column(Text, nullable=True)
    ai_genai_insights = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    panel_detections = relationship(
        "PanelDetection",
        back_populates="scan",
        cascade="all, delete-orphan",
        order_by="PanelDetection.id",
    )


class PanelDetection(Base):
    __tablename__ = "panel_detections"

    id = Column(Integer, primary_key=True, index=True)
    scan_id = Column(String, ForeignKey("solar_scans.id", ondelete="CASCADE"), index=True, nullable=False)
    panel_number = Column(String, nullable=False)
    status = Column(String, nullable=False, default="UNKNOWN")
    x1 = Column(Float, nullable=False, default=0.0)
    y1 = Column(Float, nullable=False, default=0.0)
    x2 = Column(Float, nullable=False, default=0.0)
    y2 = Column(Float, nullable=False, default=0.0)
    crop_image_url = Column(String, nullable=True)
    thermal_crop_image_url = Column(String, nullable=True)
    fault_type = Column(String, nullable=True)
    confidence = Column(Float, nullable=True)

    scan = relationship("Scan", back_populates="panel_detections")
