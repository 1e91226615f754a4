from sqlalchemy import Column, Integer, String, Float, DateTime
from sqlalchemy.orm import relationship
from ..db.session import Base
class Device(Base):
    __tablename__ = "esp_devices"
    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String, unique=True, index=True, nullable=False)
    last_seen_at = Column(DateTime, nullable=True)
    latest_voltage = Column(Float, nullable=True)
    latest_current_ma = Column(Float, nullable=True)
    latest_power_mw = Column(Float, nullable=True)
    readings = relationship("Reading", back_populates="device")
