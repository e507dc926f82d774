"""Relational tables backing the karma store."""

from __future__ import annotations

from sqlalchemy import JSON, Column, DateTime, Integer, Numeric, String, func

from karma_api.db.base import Base


class KarmaBalance(Base):
    """Current clamped karma value per normalized user key."""

    __tablename__ = "karma"

    user_name = Column(String, primary_key=True)
    value = Column(Numeric(10, 3), nullable=False, default=0, server_default="0")
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class StoredTokens(Base):
    """Single-row OAuth token document for the active broadcaster."""

    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, default=1)
    data = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)


class PendingRedemption(Base):
    """Redemption awaiting a fulfilled/canceled update."""

    __tablename__ = "pending"

    id = Column(String, primary_key=True)
    user_name = Column(String, nullable=False)
    title = Column(String, nullable=False)
    delta = Column(Numeric(10, 3), nullable=False)
    reward_id = Column(String, nullable=True)
    broadcaster_id = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(String, nullable=False)
