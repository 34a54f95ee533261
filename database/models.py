"""
SQLAlchemy ORM models for the settings record.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text
from sqlalchemy.orm import DeclarativeBase, relationship


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    user_id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    display_name = Column(String(128))
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    settings = relationship("UserSettings", back_populates="user", uselist=False, cascade="all, delete-orphan")


class UserSettings(Base):
    __tablename__ = "user_settings"

    user_id = Column(String(64), ForeignKey("users.user_id", ondelete="CASCADE"), primary_key=True)

    # Secrets below hold ``iv:ciphertext`` values written by CredentialCipher.
    monday_api_key = Column(Text)
    redmine_url = Column(String(512))
    redmine_api_key = Column(Text)
    google_client_id = Column(String(256))
    google_client_secret = Column(Text)
    google_refresh_token = Column(Text)
    spotify_client_id = Column(String(256))
    spotify_client_secret = Column(Text)
    spotify_refresh_token = Column(Text)

    theme = Column(String(16), nullable=False, default="dark")
    compact_mode = Column(Boolean, nullable=False, default=False)
    animations_enabled = Column(Boolean, nullable=False, default=True)
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    user = relationship("User", back_populates="settings")
