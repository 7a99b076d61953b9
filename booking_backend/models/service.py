"""Service model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, Numeric, String
from booking_backend.database import Base


class Service(Base):
    """A prestation offered by a stylist, with its duration and price."""
    __tablename__ = "services"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
