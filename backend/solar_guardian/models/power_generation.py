from sqlalchemy import Column, Integer, Float, DateTime
from ..db.session import Base
class PowerGeneration(Base):
    __tablename__ = "power_generation"
    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, unique=True, index=True, nullable=False)
    value = Column(Float, nullable=False)
