"""User model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from booking_backend.database import Base

ROLE_CLIENT = 'client'
ROLE_STYLIST = 'stylist'
ROLE_ADMIN = 'admin'


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    name = Column(String)
    role = Column(String, default=ROLE_CLIENT)  # client/stylist/admin
    is_active = Column(Boolean, default=True, nullable=False)

    @property
    def is_stylist(self) -> bool:
        return self.role == ROLE_STYLIST
