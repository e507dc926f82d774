"""One-off maintenance over the pending redemption set."""

from __future__ import annotations

from dataclasses import dataclass, field

from loguru import logger

from karma_api.services.storage import KarmaStore


@dataclass
class RequeueSummary:
    rewritten: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    dry_run: bool = False


async def requeue_pending_redemptions(store: KarmaStore, *, dry_run: bool = False) -> RequeueSummary:
    """Rewrite every pending record so stored deltas use the quantized decimal form.

    Records whose delta is zero could never affect the ledger and are skipped.
    """

    summary = RequeueSummary(dry_run=dry_run)
    pending = await store.pending_all()
    for redemption_id, record in pending.items():
        if not record.delta:
            summary.skipped.append(redemption_id)
            logger.warning("Pending redemption without delta skipped", redemption_id=redemption_id)
            continue
        summary.rewritten.append(redemption_id)
        if dry_run:
            logger.info("Would rewrite pending redemption", redemption_id=redemption_id, delta=str(record.delta))
            continue
        await store.pending_add(record)
        logger.debug("Pending redemption rewritten", redemption_id=redemption_id, delta=str(record.delta))
    return summary


__all__ = ["RequeueSummary", "requeue_pending_redemptions"]
