#!/usr/bin/env python3
"""Rewrite pending redemptions through the configured store (normalizes stored deltas)."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

from loguru import logger


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Requeue pending channel point redemptions")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List the records that would be rewritten without writing them.",
    )
    return parser.parse_args()


async def _run(dry_run: bool) -> int:
    repo_root = Path(__file__).resolve().parents[2]
    api_src = repo_root / "apps" / "api" / "src"
    if str(api_src) not in sys.path:
        sys.path.insert(0, str(api_src))

    from karma_api.core.settings import settings  # type: ignore import-position
    from karma_api.services.redemptions import requeue_pending_redemptions  # type: ignore import-position
    from karma_api.services.storage import create_store  # type: ignore import-position

    store = create_store(settings)
    await store.init()
    try:
        summary = await requeue_pending_redemptions(store, dry_run=dry_run)
    finally:
        await store.close()

    logger.success(
        "Pending redemptions requeued",
        backend=settings.store_backend,
        rewritten=len(summary.rewritten),
        skipped=len(summary.skipped),
        dry_run=summary.dry_run,
    )
    return 0


def main() -> int:
    args = parse_args()
    return asyncio.run(_run(args.dry_run))


if __name__ == "__main__":
    raise SystemExit(main())
