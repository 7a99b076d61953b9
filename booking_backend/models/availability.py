"""Availability rule model definitions."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, Time, func
from booking_backend.database import Base


class AvailabilityRule(Base):
    """A recurring weekly window during which a stylist accepts bookings.

    ``day_of_week`` counts from Sunday (0) to Saturday (6).
    """
    __tablename__ = "availability_rules"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    deleted_at = Column(DateTime, nullable=True)
