"""Single JSON document store for local and single-instance deployments."""

from __future__ import annotations

import asyncio
import copy
import json
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Mapping

from loguru import logger

from karma_api.domain import LedgerBounds, RedemptionRecord, to_decimal

from .base import StoreError


def _empty_document() -> dict[str, Any]:
    return {"karma": {}, "tokens": None, "pending": {}}


def _parse_record(payload: Mapping[str, Any]) -> RedemptionRecord | None:
    try:
        return RedemptionRecord.from_dict(payload)
    except (KeyError, ValueError) as error:
        logger.warning("Unreadable pending redemption skipped", redemption_id=payload.get("id"), error=str(error))
        return None


class FileKarmaStore:
    """Keeps karma, tokens and pending redemptions in one JSON file.

    Every operation runs under one ``asyncio.Lock``; the document is rewritten
    through a temp file and ``os.replace`` so a crash never leaves half a file.
    """

    def __init__(self, path: str | Path, *, bounds: LedgerBounds) -> None:
        self._path = Path(path)
        self._bounds = bounds
        self._lock = asyncio.Lock()
        self._document: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self._path

    async def init(self) -> None:
        async with self._lock:
            self._document = await asyncio.to_thread(self._read)
            if not self._path.exists():
                await asyncio.to_thread(self._write, self._document)
        logger.info("File karma store ready", path=str(self._path))

    async def close(self) -> None:
        self._document = None

    async def get_all(self) -> dict[str, Decimal]:
        async with self._lock:
            document = await self._load()
            return {user: to_decimal(value) for user, value in document["karma"].items()}

    async def get_user(self, user: str) -> Decimal:
        async with self._lock:
            document = await self._load()
            return to_decimal(document["karma"].get(user, 0))

    async def apply_delta(self, user: str, delta: Decimal) -> Decimal:
        async with self._lock:
            document = await self._draft()
            current = to_decimal(document["karma"].get(user, 0))
            value = self._bounds.clamp(current + delta)
            document["karma"][user] = str(value)
            await self._commit(document)
            return value

    async def set_user(self, user: str, value: Decimal) -> Decimal:
        async with self._lock:
            document = await self._draft()
            clamped = self._bounds.clamp(value)
            document["karma"][user] = str(clamped)
            await self._commit(document)
            return clamped

    async def save_tokens(self, tokens: Mapping[str, Any]) -> None:
        async with self._lock:
            document = await self._draft()
            document["tokens"] = dict(tokens)
            await self._commit(document)

    async def load_tokens(self) -> dict[str, Any] | None:
        async with self._lock:
            document = await self._load()
            tokens = document.get("tokens")
            return dict(tokens) if tokens else None

    async def pending_add(self, record: RedemptionRecord) -> None:
        async with self._lock:
            document = await self._draft()
            document["pending"][record.id] = record.as_dict()
            await self._commit(document)

    async def pending_get(self, redemption_id: str) -> RedemptionRecord | None:
        async with self._lock:
            document = await self._load()
            payload = document["pending"].get(redemption_id)
            return _parse_record(payload) if payload else None

    async def pending_all(self) -> dict[str, RedemptionRecord]:
        async with self._lock:
            document = await self._load()
            parsed = (_parse_record(payload) for payload in document["pending"].values())
            records = [record for record in parsed if record is not None]
        records.sort(key=lambda record: record.created_at)
        return {record.id: record for record in records}

    async def pending_delete(self, redemption_id: str) -> None:
        async with self._lock:
            document = await self._draft()
            if document["pending"].pop(redemption_id, None) is not None:
                await self._commit(document)

    async def _load(self) -> dict[str, Any]:
        if self._document is None:
            self._document = await asyncio.to_thread(self._read)
        return self._document

    async def _draft(self) -> dict[str, Any]:
        return copy.deepcopy(await self._load())

    async def _commit(self, document: dict[str, Any]) -> None:
        """Persist ``document``; the cached copy only changes once the write succeeded."""

        await asyncio.to_thread(self._write, document)
        self._document = document

    def _read(self) -> dict[str, Any]:
        if not self._path.exists():
            return _empty_document()
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8") or "{}")
        except (OSError, json.JSONDecodeError) as error:
            raise StoreError(f"Unable to read karma store at {self._path}: {error}") from error
        document = _empty_document()
        document["karma"].update(raw.get("karma") or {})
        document["tokens"] = raw.get("tokens")
        document["pending"].update(raw.get("pending") or {})
        return document

    def _write(self, document: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self._path.name}.", dir=self._path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(document, handle, indent=2, sort_keys=True, default=str)
            os.replace(tmp_path, self._path)
        except OSError as error:
            Path(tmp_path).unlink(missing_ok=True)
            raise StoreError(f"Unable to write karma store at {self._path}: {error}") from error


__all__ = ["FileKarmaStore"]
