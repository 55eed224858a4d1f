"""Async SQL transaction ledger via SQLAlchemy + aiosqlite.

Rows are upserted by ``(chain_id, tx_hash, tx_action_index)`` so logging
the same chain action twice leaves a single record.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Sequence

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from cl_rebalancer.interfaces import TransactionLedger
from cl_rebalancer.models import AccountTransaction, Base

logger = structlog.get_logger()


class SqlTransactionLedger(TransactionLedger):
    """Append-only ledger of the wallet's confirmed chain actions."""

    def __init__(self, db_url: str) -> None:
        self._db_url = db_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self) -> None:
        """Create engine, session factory, and ensure tables exist."""
        self._engine = create_async_engine(self._db_url, echo=False)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("ledger_initialized", url=self._db_url)

    async def close(self) -> None:
        """Dispose engine connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("ledger_closed")

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield an async session with automatic commit / rollback."""
        assert self._session_factory is not None, "Call init() first"
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def add_transaction(self, record: AccountTransaction) -> None:
        async with self._session() as session:
            await session.merge(record)
        logger.debug(
            "transaction_recorded",
            chain_id=record.chain_id,
            tx_hash=record.tx_hash,
            action_index=record.tx_action_index,
            transaction_type=record.transaction_type,
        )

    async def add_transaction_batch(self, records: Sequence[AccountTransaction]) -> None:
        """Upsert several rows in one transaction."""
        if not records:
            return
        async with self._session() as session:
            for record in records:
                await session.merge(record)
        logger.debug("transaction_batch_recorded", count=len(records))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_account_transactions(
        self, signer_address: str, limit: Optional[int] = None
    ) -> Sequence[AccountTransaction]:
        """Most recent rows for ``signer_address`` first."""
        query = (
            select(AccountTransaction)
            .where(AccountTransaction.signer_address == signer_address)
            .order_by(AccountTransaction.created_at.desc(), AccountTransaction.tx_action_index)
        )
        if limit is not None:
            query = query.limit(limit)
        async with self._session() as session:
            result = await session.execute(query)
            return result.scalars().all()
