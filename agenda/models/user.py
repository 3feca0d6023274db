"""User model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from agenda.database import Base

ROLE_ADMIN = "admin"
ROLE_PROVIDER = "provider"
ROLE_PATIENT = "patient"


class User(Base):
    """Represents a platform user: a patient, a provider, or an administrator."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    hashed_password = Column(String)
    role = Column(String)  # patient/provider/admin
    is_active = Column(Boolean, default=True)
