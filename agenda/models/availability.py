"""Availability model definitions."""

import enum

from sqlalchemy import Boolean, CheckConstraint, Column, ForeignKey, Index, Integer, String, Time
from agenda.database import Base

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")


class Modality(str, enum.Enum):
    PRESENCIAL = "PRESENCIAL"
    VIRTUAL = "VIRTUAL"


class AvailabilityBlock(Base):
    """A weekly recurring window in which a provider accepts appointments.

    ``weekday`` counts from Sunday (0) to Saturday (6).
    """
    __tablename__ = "availability_blocks"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    weekday = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    modality = Column(String(20), nullable=False)
    active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint("weekday >= 0 AND weekday <= 6", name="ck_availability_weekday"),
        CheckConstraint("start_time < end_time", name="ck_availability_time_order"),
        Index("idx_availability_provider_weekday", "provider_id", "weekday"),
    )

    def __repr__(self) -> str:
        day_name = WEEKDAY_NAMES[self.weekday] if 0 <= self.weekday <= 6 else "?"
        return f"<AvailabilityBlock {day_name} {self.start_time}-{self.end_time} {self.modality}>"


def weekday_of(day) -> int:
    """Weekday of a date or datetime, counted from Sunday = 0."""
    return (day.weekday() + 1) % 7
