"""SQLAlchemy models for the relational karma store."""

from .karma import KarmaBalance, PendingRedemption, StoredTokens  # noqa: F401
