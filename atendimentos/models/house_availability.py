"""House availability model definitions."""

from sqlalchemy import Boolean, Column, Integer, String, UniqueConstraint
from atendimentos.database import Base


class HouseAvailability(Base):
    """Weekly operating hours of a house, one row per weekday."""
    __tablename__ = "house_availability"
    __table_args__ = (UniqueConstraint("house_id", "day_of_week", name="uq_house_availability_day"),)

    id = Column(Integer, primary_key=True)
    house_id = Column(String, nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    start_time = Column(String, nullable=False)
    end_time = Column(String, nullable=False)
    is_active = Column(Boolean, default=True)
    break_start = Column(String)
    break_end = Column(String)
