"""Karma ledger exports."""

from .ledger_service import KarmaLedger  # noqa: F401
