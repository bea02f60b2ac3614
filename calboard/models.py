"""SQLAlchemy models for Calboard."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship

from .utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return utcnow()


class Meta(Base):
    __tablename__ = "meta"

    key = Column(String(128), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(DateTime, default=_now, onupdate=_now, nullable=False)


class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(320), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    display_name = Column(String(120), nullable=True)
    failed_sign_ins = Column(Integer, default=0, nullable=False)
    locked_until = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)

    sessions = relationship(
        "AuthSession", back_populates="user", cascade="all, delete-orphan"
    )


class AuthSession(Base):
    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at = Column(DateTime, default=_now, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, nullable=True)

    user = relationship("User", back_populates="sessions")


class Event(Base):
    __tablename__ = "event"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    type = Column(String(120), nullable=False, default="")
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=False, default="")
    date = Column(DateTime, nullable=True)
    name = Column(String(120), nullable=False, default="user")
    user_id = Column(String(36), nullable=False, index=True)
    url = Column(String(2048), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=True)
    updated_at = Column(DateTime, default=_now, nullable=True)


class Invitation(Base):
    __tablename__ = "invitations"

    id = Column(String(128), primary_key=True)
    used = Column(Boolean, default=False, nullable=False)
    used_by = Column(String(36), nullable=True)
    used_at = Column(DateTime, nullable=True)
    note = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=_now, nullable=False)
