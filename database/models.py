"""
SQLAlchemy ORM models for the OAuth connection subsystem.

User accounts live in the identity service; ``user_id`` columns here are
opaque strings and carry no foreign key.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops the offset)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
    pass


class OAuthStateRecord(Base):
    """One pending authorization per (user, platform)."""

    __tablename__ = "oauth_states"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", name="uq_oauth_states_user_platform"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False)
    platform = Column(String(32), nullable=False)
    state = Column(Text, nullable=False)
    nonce = Column(String(64), nullable=False)
    owner_hash = Column(String(64), nullable=False)
    issued_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)


class AdAccount(Base):
    """A connected ad account and its (encrypted) credential."""

    __tablename__ = "ad_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "platform", "account_id", name="uq_ad_accounts_user_platform_account"),
        Index("ix_ad_accounts_user_active", "user_id", "is_active"),
    )

    connection_id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(64), nullable=False)
    platform = Column(String(32), nullable=False)
    account_id = Column(String(256), nullable=False)
    account_name = Column(Text)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text)
    token_expires_at = Column(DateTime(timezone=True))
    scopes = Column(JSON, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    connected_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class PlanEntitlement(Base):
    """Plan limits written by the billing service; read-only here."""

    __tablename__ = "plan_entitlements"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    plan = Column(String(32), nullable=False, default="free")
    max_connections = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)
