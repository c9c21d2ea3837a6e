"""
ORM models for the entities the bulk import pipeline writes.

Natural keys (usernames, emails, role and application names, requested
emails) are stored as given and compared case-insensitively by the validation
layer.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from app.db.session import Base


def _utcnow() -> datetime:
    """Return a timezone-aware UTC timestamp."""
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class User(Base):
    """Platform user account."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_new_id)
    username = Column(String(50), unique=True, index=True, nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    phone_number = Column(String(20), nullable=True)
    department = Column(String(100), nullable=True)
    role = Column(String(50), nullable=False, default="User")
    is_active = Column(Boolean, nullable=False, default=True)
    password_hash = Column(String(255), nullable=False)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    applications = relationship("UserApplication", back_populates="user")


class UserRole(Base):
    """Named role that can be granted to users."""
    __tablename__ = "user_roles"

    id = Column(String(36), primary_key=True, default=_new_id)
    role_name = Column(String(100), unique=True, index=True, nullable=False)
    created_by = Column(String(50), nullable=False)
    created_at = Column(DateTime, default=_utcnow)


class Application(Base):
    """Application users can be assigned to."""
    __tablename__ = "applications"

    id = Column(String(36), primary_key=True, default=_new_id)
    application_name = Column(String(100), unique=True, index=True, nullable=False)
    application_description = Column(String(500), nullable=False)
    data_source_type = Column(String(20), nullable=False, default="Database")
    is_active = Column(Boolean, nullable=False, default=True)
    owner = Column(String(100), nullable=True)
    category = Column(String(50), nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=_utcnow)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow)

    users = relationship("UserApplication", back_populates="application")


class UserApplication(Base):
    """Assignment of a user to an application."""
    __tablename__ = "user_applications"
    __table_args__ = (UniqueConstraint("user_id", "application_id", name="uq_user_application"),)

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    application_id = Column(String(36), ForeignKey("applications.id"), nullable=False, index=True)
    permission_level = Column(String(20), nullable=False, default="Read")
    expiration_date = Column(DateTime, nullable=True)
    notes = Column(String(500), nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=_utcnow)

    user = relationship("User", back_populates="applications")
    application = relationship("Application", back_populates="users")


class TemporaryUser(Base):
    """Pending account request; the email doubles as the username until approval."""
    __tablename__ = "temporary_users"

    id = Column(String(36), primary_key=True, default=_new_id)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(100), unique=True, index=True, nullable=False)
    username = Column(String(100), nullable=False)
    password_hash = Column(String(255), nullable=False)
    phone_number = Column(String(20), nullable=True)
    token = Column(String(36), unique=True, nullable=False, default=_new_id)
    requested_applications = Column(String(500), nullable=True)
    justification = Column(String(1000), nullable=True)
    requested_by = Column(String(50), nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=_utcnow)


class BulkUploadHistory(Base):
    """One row per imported file, written by the database upload history."""
    __tablename__ = "bulk_upload_history"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), nullable=True, index=True)
    table_type = Column(String(50), nullable=True)
    file_name = Column(String(500), nullable=False)
    status = Column(String(50), nullable=False, default="Processing")
    total_rows = Column(Integer, default=0)
    processed_rows = Column(Integer, default=0)
    succeeded_rows = Column(Integer, default=0)
    failed_rows = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    started_at = Column(DateTime, default=_utcnow)
    completed_at = Column(DateTime, nullable=True)
