"""SQLAlchemy-backed karma store (SQLite locally, Postgres in production)."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping

from loguru import logger
from sqlalchemy import Numeric, delete, func, literal, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from karma_api.db.base import Base
from karma_api.domain import LedgerBounds, RedemptionRecord, RedemptionStatus, to_decimal
from karma_api.models import KarmaBalance, PendingRedemption, StoredTokens

from .base import StoreConfigurationError, StoreError

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]

_TOKENS_ROW_ID = 1
_AMOUNT_TYPE = Numeric(10, 3)


class RelationalKarmaStore:
    """Karma store whose ``apply_delta`` is one clamped ``INSERT ... ON CONFLICT`` statement."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        bounds: LedgerBounds,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._bounds = bounds
        self._engine = engine

    async def init(self) -> None:
        if self._engine is None:
            return
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except (SQLAlchemyError, OSError) as error:
            raise StoreError(f"Unable to prepare karma tables: {error}") from error
        logger.info("Relational karma store ready", dialect=self._engine.dialect.name)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()

    async def get_all(self) -> dict[str, Decimal]:
        async with self._session() as session:
            result = await session.execute(select(KarmaBalance.user_name, KarmaBalance.value))
            return {row.user_name: to_decimal(row.value) for row in result}

    async def get_user(self, user: str) -> Decimal:
        async with self._session() as session:
            value = await session.scalar(select(KarmaBalance.value).where(KarmaBalance.user_name == user))
            return to_decimal(value or 0)

    async def apply_delta(self, user: str, delta: Decimal) -> Decimal:
        async with self._session() as session:
            insert, floor, ceiling = self._dialect_ops(session)
            minimum = literal(self._bounds.minimum, _AMOUNT_TYPE)
            maximum = literal(self._bounds.maximum, _AMOUNT_TYPE)
            stmt = insert(KarmaBalance).values(user_name=user, value=self._bounds.clamp(delta))
            stmt = stmt.on_conflict_do_update(
                index_elements=[KarmaBalance.user_name],
                set_={
                    "value": floor(minimum, ceiling(maximum, KarmaBalance.value + delta)),
                    "updated_at": func.now(),
                },
            ).returning(KarmaBalance.value)
            value = (await session.execute(stmt)).scalar_one()
            await session.commit()
            return to_decimal(value)

    async def set_user(self, user: str, value: Decimal) -> Decimal:
        clamped = self._bounds.clamp(value)
        async with self._session() as session:
            insert, _, _ = self._dialect_ops(session)
            stmt = insert(KarmaBalance).values(user_name=user, value=clamped)
            stmt = stmt.on_conflict_do_update(
                index_elements=[KarmaBalance.user_name],
                set_={"value": stmt.excluded.value, "updated_at": func.now()},
            )
            await session.execute(stmt)
            await session.commit()
        return clamped

    async def save_tokens(self, tokens: Mapping[str, Any]) -> None:
        async with self._session() as session:
            insert, _, _ = self._dialect_ops(session)
            stmt = insert(StoredTokens).values(id=_TOKENS_ROW_ID, data=dict(tokens))
            stmt = stmt.on_conflict_do_update(
                index_elements=[StoredTokens.id],
                set_={"data": stmt.excluded.data, "updated_at": func.now()},
            )
            await session.execute(stmt)
            await session.commit()

    async def load_tokens(self) -> dict[str, Any] | None:
        async with self._session() as session:
            data = await session.scalar(select(StoredTokens.data).where(StoredTokens.id == _TOKENS_ROW_ID))
            return dict(data) if data else None

    async def pending_add(self, record: RedemptionRecord) -> None:
        values = {
            "id": record.id,
            "user_name": record.user,
            "title": record.title,
            "delta": record.delta,
            "reward_id": record.reward_id,
            "broadcaster_id": record.broadcaster_id,
            "created_at": record.created_at,
            "status": record.status.value,
        }
        async with self._session() as session:
            insert, _, _ = self._dialect_ops(session)
            stmt = insert(PendingRedemption).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[PendingRedemption.id],
                set_={column: getattr(stmt.excluded, column) for column in values if column != "id"},
            )
            await session.execute(stmt)
            await session.commit()

    async def pending_get(self, redemption_id: str) -> RedemptionRecord | None:
        async with self._session() as session:
            row = await session.get(PendingRedemption, redemption_id)
            return _to_record(row) if row is not None else None

    async def pending_all(self) -> dict[str, RedemptionRecord]:
        async with self._session() as session:
            result = await session.execute(select(PendingRedemption).order_by(PendingRedemption.created_at.asc()))
            return {row.id: _to_record(row) for row in result.scalars()}

    async def pending_delete(self, redemption_id: str) -> None:
        async with self._session() as session:
            await session.execute(delete(PendingRedemption).where(PendingRedemption.id == redemption_id))
            await session.commit()

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        maybe_session = self._session_factory()
        session = maybe_session if isinstance(maybe_session, AsyncSession) else await maybe_session
        try:
            async with session as managed:
                yield managed
        except SQLAlchemyError as error:
            raise StoreError(f"Relational karma store failure: {error}") from error

    @staticmethod
    def _dialect_ops(session: AsyncSession):
        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            return postgresql.insert, func.greatest, func.least
        if dialect == "sqlite":
            return sqlite.insert, func.max, func.min
        raise StoreConfigurationError(f"Unsupported database dialect for karma store: {dialect}")


def _to_record(row: PendingRedemption) -> RedemptionRecord:
    created_at: datetime = row.created_at
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return RedemptionRecord(
        id=row.id,
        user=row.user_name,
        title=row.title,
        delta=to_decimal(row.delta),
        reward_id=row.reward_id,
        broadcaster_id=row.broadcaster_id,
        created_at=created_at,
        status=RedemptionStatus.parse(row.status) or RedemptionStatus.UNFULFILLED,
    )


__all__ = ["RelationalKarmaStore"]
