"""
Catalog Backend — Regional Store (Local Persistence)
====================================================

What:  Every read and write of the `regionais` table goes through this module.
Why:   The reconciler needs an explicit transaction boundary: a plan is applied
       completely or not at all, and readers never see half of it.
How:   RegionalStore opens one AsyncSession per operation from the session
       factory. Mutations only happen through run_in_transaction(fn), which
       hands `fn` a RegionalTransaction bound to that session.

Transaction contract:
    async def work(tx: RegionalTransaction) -> int:
        await tx.inactivate(record_id)
        await tx.insert_active(external_id, name)
        return 2

    await store.run_in_transaction(work)
    → commits if `work` returns, rolls back and re-raises if it raises.

Read path:
    list_active()       → reconciler input, ordered by external_id
    list_all_active()   → GET /api/v1/regionais
    list_all()          → GET /api/v1/regionais/all (history included)
"""

import logging
from typing import Awaitable, Callable, List, TypeVar

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from catalog_api.database import async_session_factory
from catalog_api.exceptions import DatabaseError, StaleRecordError
from catalog_api.models.regional import RegionalRecord, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RegionalTransaction:
    """
    Handle for mutations inside one open transaction.

    Only the applier holds one, and only for the duration of
    RegionalStore.run_in_transaction().
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active(self) -> List[RegionalRecord]:
        result = await self.session.execute(
            select(RegionalRecord)
            .where(RegionalRecord.active.is_(True))
            .order_by(RegionalRecord.external_id)
        )
        return list(result.scalars().all())

    async def insert_active(self, external_id: int, name: str) -> RegionalRecord:
        """
        Insert a new active version for `external_id`.

        Flushed immediately so the row gets its id and the partial unique
        index is checked now, not at commit time.
        """
        now = utc_now()
        record = RegionalRecord(
            external_id=external_id,
            name=name,
            active=True,
            created_at=now,
            updated_at=now,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def inactivate(self, record_id: int) -> None:
        """
        Flip one active row to inactive.

        Raises:
            StaleRecordError: no active row with this id exists anymore.
        """
        result = await self.session.execute(
            update(RegionalRecord)
            .where(RegionalRecord.id == record_id, RegionalRecord.active.is_(True))
            .values(active=False, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleRecordError(record_id)


class RegionalStore:
    """
    Local Store for regional records.

    Holds no state besides the session factory: each call reads the table
    fresh, so a reconciliation always plans against the committed state.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def run_in_transaction(
        self, fn: Callable[[RegionalTransaction], Awaitable[T]]
    ) -> T:
        """
        Run `fn` atomically.

        On any exception raised by `fn` (or by the commit), the transaction is
        rolled back and the exception propagates; no partial mutation is
        ever visible to other sessions.
        """
        async with self._session_factory() as session:
            async with session.begin():
                return await fn(RegionalTransaction(session))

    async def list_active(self) -> List[RegionalRecord]:
        """Active rows ordered by external_id ascending."""
        async with self._session_factory() as session:
            return await RegionalTransaction(session).list_active()

    async def list_all_active(self) -> List[RegionalRecord]:
        try:
            return await self.list_active()
        except Exception as e:
            logger.error("Database error listing active regionais: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve regionais. Please try again.",
                context={"error_type": type(e).__name__},
            )

    async def list_all(self) -> List[RegionalRecord]:
        """Every row, historical versions included, by external_id then id."""
        try:
            async with self._session_factory() as session:
                result = await session.execute(
                    select(RegionalRecord).order_by(
                        RegionalRecord.external_id, RegionalRecord.id
                    )
                )
                return list(result.scalars().all())
        except Exception as e:
            logger.error("Database error listing regionais: %s", str(e), exc_info=True)
            raise DatabaseError(
                message="Could not retrieve regionais. Please try again.",
                context={"error_type": type(e).__name__},
            )


# ── Singleton Instance ────────────────────────────────────────────────────
regional_store = RegionalStore(async_session_factory)
