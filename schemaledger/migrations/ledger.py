"""
Migration ledger: the durable record of applied migrations.

The ledger lives in two tables owned by the engine (see models.py):
the entries table with one row per applied migration, and the single-row
control table that holds the batch high-water mark. The high-water mark
makes batch numbers strictly increasing even after rollbacks free the
most recent batch numbers.

Writes accept an optional connection so the executor can make the ledger
write part of the same transaction as the schema change it records.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, FrozenSet, List, Optional, Tuple

from sqlalchemy import delete, func, insert, select, update

from schemaledger.errors import AlreadyRecorded, NotRecorded
from schemaledger.migrations.migration import LedgerEntry
from schemaledger.models import CONTROL_ROW_ID

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class LedgerSnapshot:
    """
    Immutable view of the ledger taken in one read.

    Planning works from a snapshot only, so a plan is always computed
    against one consistent applied set.

    Attributes:
        entries: Ledger entries ordered by batch, then insertion order
        high_water: Highest batch number ever handed out
    """
    entries: Tuple[LedgerEntry, ...] = ()
    high_water: int = 0

    def latest_batch(self) -> int:
        """Highest batch present, or 0 if the ledger is empty."""
        return max((e.batch for e in self.entries), default=0)

    def next_batch(self) -> int:
        """Batch number the next forward run is recorded under."""
        return max(self.high_water, self.latest_batch()) + 1

    def entries_in_batch(self, batch: int) -> List[str]:
        """Names recorded under batch, in insertion order."""
        return [e.migration_name for e in self.entries if e.batch == batch]

    def all_applied(self) -> FrozenSet[str]:
        return frozenset(e.migration_name for e in self.entries)

    def batches_descending(self) -> List[int]:
        return sorted({e.batch for e in self.entries}, reverse=True)

    def get(self, name: str) -> Optional[LedgerEntry]:
        for entry in self.entries:
            if entry.migration_name == name:
                return entry
        return None

    def __len__(self) -> int:
        return len(self.entries)


class MigrationLedger:
    """
    Reads and writes the ledger tables through a schema backend.

    Example:
        >>> ledger = MigrationLedger(backend)
        >>> await ledger.record_applied('001_create_users', batch=1)
        >>> await ledger.latest_batch()
        1
        >>> await ledger.all_applied()
        frozenset({'001_create_users'})
    """

    def __init__(self, backend):
        """
        Initialize ledger.

        Args:
            backend: SQLAlchemyBackend owning the ledger tables
        """
        self.backend = backend
        self.entries_table = backend.tables.entries
        self.control_table = backend.tables.control

    async def ensure_tables(self) -> None:
        """Create the ledger and control tables if they don't exist."""
        await self.backend.connect()

    @asynccontextmanager
    async def _write(self, conn: Optional[Any]) -> AsyncIterator[Any]:
        if conn is not None:
            yield conn
        else:
            async with self.backend.transaction() as own_conn:
                yield own_conn

    # ==================== Writes ====================

    async def record_applied(
        self,
        name: str,
        batch: int,
        checksum: Optional[str] = None,
        conn: Optional[Any] = None,
    ) -> None:
        """
        Record a migration as applied.

        Also raises the batch high-water mark to batch.

        Args:
            name: Migration name
            batch: Batch number (>= 1)
            checksum: Content checksum at time of application
            conn: Connection of an enclosing transaction, if any

        Raises:
            AlreadyRecorded: If name is already in the ledger
            ValueError: If batch < 1
        """
        if batch < 1:
            raise ValueError(f"Batch number must be >= 1, got {batch}")

        entries = self.entries_table
        control = self.control_table
        async with self._write(conn) as c:
            existing = await c.execute(
                select(entries.c.id).where(entries.c.migration_name == name)
            )
            if existing.first() is not None:
                raise AlreadyRecorded(name)

            await c.execute(
                insert(entries).values(
                    migration_name=name,
                    batch=batch,
                    applied_at=datetime.now(timezone.utc),
                    checksum=checksum,
                )
            )
            await c.execute(
                update(control)
                .where(control.c.id == CONTROL_ROW_ID, control.c.last_batch < batch)
                .values(last_batch=batch)
            )

        logger.debug('Recorded %s as applied (batch %d)', name, batch)

    async def record_reverted(self, name: str, conn: Optional[Any] = None) -> None:
        """
        Remove a migration from the ledger.

        Raises:
            NotRecorded: If name is not in the ledger
        """
        entries = self.entries_table
        async with self._write(conn) as c:
            result = await c.execute(
                delete(entries).where(entries.c.migration_name == name)
            )
            if result.rowcount == 0:
                raise NotRecorded(name)

        logger.debug('Recorded %s as reverted', name)

    async def clear(self, conn: Optional[Any] = None) -> int:
        """
        Delete every ledger entry. The batch high-water mark is kept.

        Returns:
            Number of entries removed
        """
        async with self._write(conn) as c:
            result = await c.execute(delete(self.entries_table))
        logger.debug('Cleared %d ledger entries', result.rowcount)
        return result.rowcount

    # ==================== Reads ====================

    async def latest_batch(self) -> int:
        entries = self.entries_table
        async with self.backend.connection() as conn:
            result = await conn.execute(select(func.max(entries.c.batch)))
            return result.scalar() or 0

    async def entries_in_batch(self, batch: int) -> List[str]:
        entries = self.entries_table
        async with self.backend.connection() as conn:
            result = await conn.execute(
                select(entries.c.migration_name)
                .where(entries.c.batch == batch)
                .order_by(entries.c.id)
            )
            return list(result.scalars())

    async def all_applied(self) -> FrozenSet[str]:
        entries = self.entries_table
        async with self.backend.connection() as conn:
            result = await conn.execute(select(entries.c.migration_name))
            return frozenset(result.scalars())

    async def snapshot(self) -> LedgerSnapshot:
        """
        Read every entry and the high-water mark in one transaction.

        Returns:
            LedgerSnapshot ordered by batch, then insertion order
        """
        entries = self.entries_table
        control = self.control_table
        async with self.backend.connection() as conn:
            rows = await conn.execute(
                select(
                    entries.c.id,
                    entries.c.migration_name,
                    entries.c.batch,
                    entries.c.applied_at,
                    entries.c.checksum,
                ).order_by(entries.c.batch, entries.c.id)
            )
            ledger_entries = tuple(
                LedgerEntry(
                    id=row.id,
                    migration_name=row.migration_name,
                    batch=row.batch,
                    applied_at=_as_utc(row.applied_at),
                    checksum=row.checksum,
                )
                for row in rows
            )
            high_water = await conn.execute(
                select(control.c.last_batch).where(control.c.id == CONTROL_ROW_ID)
            )
            return LedgerSnapshot(
                entries=ledger_entries,
                high_water=high_water.scalar() or 0,
            )
