from sqlalchemy import Column, Integer, Float, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from ..db.session import Base
from datetime import datetime
class Reading(Base):
    __tablename__ = "esp_sensor_readings"
    id = Column(Integer, primary_key=True, index=True)
    device_ref_id = Column(Integer, ForeignKey("esp_devices.id", ondelete="CASCADE"), index=True, nullable=False)
    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    voltage = Column(Float, nullable=False)
    current_ma = Column(Float, nullable=False)
    power_mw = Column(Float, nullable=False)
    device = relationship("Device", back_populates="readings")
