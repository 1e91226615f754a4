from datetime import datetime

from sqlalchemy import Column, DateTime, Float, Integer, String

from ..db.session import Base


class Panel(Base):
    __tablename__ = "solar_panels"

    id = Column(Integer, primary_key=True, index=True)
    panel_id = Column(String, unique=True, index=True, nullable=False)
    zone = Column(String, nullable=False, index=True)
    row = Column(Integer, nullable=False)
    column = Column(Integer, nullable=False)
    max_output = Column(Float, nullable=False, default=400.0)
    current_output = Column(Float, nullable=False, default=0.0)
    efficiency = Column(Float, nullable=False, default=0.0)
    # Derived by the ingestion path, never set directly
    status = Column(String, nullable=False, default="offline", index=True)
    temperature = Column(Float, nullable=True)
    inverter_group = Column(String, nullable=True)
    string_id = Column(String, nullable=True)
    install_date = Column(DateTime, nullable=True)
    last_checked = Column(DateTime, default=datetime.utcnow, nullable=True)
