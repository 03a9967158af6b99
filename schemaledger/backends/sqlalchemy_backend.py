#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SQLAlchemy schema backend.

Translates structural operations to DDL through Alembic's ``Operations``
API, running on an async SQLAlchemy engine via ``run_sync``. On SQLite,
column drops, column renames and foreign key changes go through Alembic
batch mode (copy-and-move table recreation), since SQLite's ALTER TABLE
cannot express them.

The advisory lock lives in the single-row control table so that it is
shared by every process pointed at the same database. An asyncio.Lock
serializes commands within one process on top of that.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Collection, List, Optional

import sqlparse
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKeyConstraint,
    Integer,
    LargeBinary,
    MetaData,
    Numeric,
    SmallInteger,
    String,
    Text,
    Time,
    inspect,
    insert,
    select,
    text,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncConnection

from schemaledger.backends.adapter import SchemaBackend
from schemaledger.database import Database
from schemaledger.errors import LockContention
from schemaledger.migrations.operations import (
    AddColumn,
    AddForeignKey,
    AddIndex,
    ColumnSpec,
    CreateTable,
    DropColumn,
    DropForeignKey,
    DropIndex,
    DropTable,
    ExecuteSQL,
    ForeignKeySpec,
    Operation,
    RenameColumn,
    RenameTable,
)
from schemaledger.models import CONTROL_ROW_ID, LedgerTables

# Seconds between lock acquisition attempts
LOCK_POLL_INTERVAL = 0.25


def column_type(spec: ColumnSpec):
    """Map an abstract column type to a SQLAlchemy type instance."""
    if spec.type == 'string':
        return String(spec.length or 255)
    if spec.type == 'numeric':
        return Numeric(spec.precision, spec.scale)
    if spec.type == 'binary':
        return LargeBinary(spec.length)
    if spec.type == 'datetime':
        return DateTime(timezone=True)
    return {
        'integer': Integer,
        'biginteger': BigInteger,
        'smallinteger': SmallInteger,
        'text': Text,
        'boolean': Boolean,
        'float': Float,
        'date': Date,
        'time': Time,
        'json': JSON,
    }[spec.type]()


def build_column(spec: ColumnSpec) -> Column:
    """Build a SQLAlchemy Column from a ColumnSpec."""
    return Column(
        spec.name,
        column_type(spec),
        nullable=spec.nullable and not spec.primary_key,
        primary_key=spec.primary_key,
        autoincrement=True if spec.autoincrement else 'auto',
        unique=spec.unique or None,
        server_default=text(spec.server_default) if spec.server_default is not None else None,
    )


def build_foreign_key(spec: ForeignKeySpec) -> ForeignKeyConstraint:
    """Build an inline ForeignKeyConstraint, forwarding the policies verbatim."""
    return ForeignKeyConstraint(
        list(spec.columns),
        [f"{spec.referenced_table}.{col}" for col in spec.referenced_columns],
        name=spec.name,
        ondelete=spec.on_delete.value if spec.on_delete else None,
        onupdate=spec.on_update.value if spec.on_update else None,
    )


class SQLAlchemyBackend(SchemaBackend):
    """
    Schema backend for any SQLAlchemy async dialect.

    Attributes:
        database: Database wrapper holding the async engine
        tables: Ledger/control tables owned by the engine
        lock_stale_after: Seconds after which a held lock may be taken over
            (None disables takeover)

    Example:
        backend = SQLAlchemyBackend(Database('app.db'), build_ledger_tables())
        await backend.connect()
    """

    def __init__(
        self,
        database: Database,
        tables: LedgerTables,
        transactional_ddl: Optional[bool] = None,
        lock_stale_after: Optional[float] = None,
        logger: Optional[logging.Logger] = None,
    ):
        """
        Initialize backend.

        Args:
            database: Database wrapper
            tables: Ledger/control tables
            transactional_ddl: Force transactional DDL on/off (None detects
                from the dialect)
            lock_stale_after: Stale lock takeover threshold in seconds
            logger: Optional logger
        """
        super().__init__(logger or logging.getLogger(__name__))
        self.database = database
        self.tables = tables
        self.lock_stale_after = lock_stale_after
        self._transactional_ddl = transactional_ddl
        self._local_lock = asyncio.Lock()

    @property
    def dialect(self) -> str:
        return self.database.dialect

    @property
    def supports_transactional_ddl(self) -> bool:
        if self._transactional_ddl is not None:
            return self._transactional_ddl
        return self.database.supports_transactional_ddl

    # ==================== Lifecycle ====================

    async def connect(self) -> None:
        """Create the ledger and control tables if they don't exist."""
        if self._is_connected:
            return

        async with self.database.begin() as conn:
            await conn.run_sync(self.tables.metadata.create_all, checkfirst=True)

        control = self.tables.control
        try:
            async with self.database.begin() as conn:
                existing = await conn.execute(
                    select(control.c.id).where(control.c.id == CONTROL_ROW_ID)
                )
                if existing.first() is None:
                    await conn.execute(
                        insert(control).values(id=CONTROL_ROW_ID, last_batch=0)
                    )
        except IntegrityError:
            # Created concurrently by another process
            self.logger.debug('Control row already created by another process')

        self._is_connected = True
        self.logger.debug(
            'Ensured tables %s and %s exist',
            self.tables.entries.name,
            self.tables.control.name,
        )

    async def close(self) -> None:
        await self.database.close()
        self._is_connected = False

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        async with self.database.begin() as conn:
            yield conn

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[AsyncConnection]:
        async with self.database.connect() as conn:
            yield conn

    # ==================== Structural Operations ====================

    async def apply(self, operation: Operation, conn: AsyncConnection) -> None:
        self.logger.debug('Applying %s', operation.describe())
        await conn.run_sync(self._apply_sync, operation)

    def _apply_sync(self, sync_conn, operation: Operation) -> None:
        ops = Operations(MigrationContext.configure(sync_conn))
        handler = getattr(self, f'_apply_{operation.kind}', None)
        if handler is None:
            raise NotImplementedError(f"Unsupported operation: {operation.kind}")
        handler(ops, operation)

    def _apply_create_table(self, ops: Operations, op: CreateTable) -> None:
        ops.create_table(
            op.table,
            *[build_column(col) for col in op.columns],
            *[build_foreign_key(fk) for fk in op.foreign_keys],
        )
        for index in op.indexes:
            ops.create_index(index.name, op.table, list(index.columns), unique=index.unique)

    def _apply_drop_table(self, ops: Operations, op: DropTable) -> None:
        ops.drop_table(op.table)

    def _apply_rename_table(self, ops: Operations, op: RenameTable) -> None:
        ops.rename_table(op.table, op.new_name)

    def _apply_add_column(self, ops: Operations, op: AddColumn) -> None:
        ops.add_column(op.table, build_column(op.column))

    def _apply_drop_column(self, ops: Operations, op: DropColumn) -> None:
        with ops.batch_alter_table(op.table) as batch:
            batch.drop_column(op.column)

    def _apply_rename_column(self, ops: Operations, op: RenameColumn) -> None:
        with ops.batch_alter_table(op.table) as batch:
            batch.alter_column(op.column, new_column_name=op.new_name)

    def _apply_add_foreign_key(self, ops: Operations, op: AddForeignKey) -> None:
        with ops.batch_alter_table(op.table) as batch:
            batch.create_foreign_key(
                op.name,
                op.referenced_table,
                list(op.columns),
                list(op.referenced_columns),
                ondelete=op.on_delete.value if op.on_delete else None,
                onupdate=op.on_update.value if op.on_update else None,
            )

    def _apply_drop_foreign_key(self, ops: Operations, op: DropForeignKey) -> None:
        with ops.batch_alter_table(op.table) as batch:
            batch.drop_constraint(op.name, type_='foreignkey')

    def _apply_add_index(self, ops: Operations, op: AddIndex) -> None:
        ops.create_index(op.name, op.table, list(op.columns), unique=op.unique)

    def _apply_drop_index(self, ops: Operations, op: DropIndex) -> None:
        ops.drop_index(op.name, table_name=op.table)

    def _apply_execute_sql(self, ops: Operations, op: ExecuteSQL) -> None:
        for statement in sqlparse.split(op.sql):
            if sqlparse.format(statement, strip_comments=True).strip():
                ops.get_bind().exec_driver_sql(statement)

    # ==================== Fresh ====================

    async def drop_all(self, conn: AsyncConnection, exclude: Collection[str] = ()) -> List[str]:
        keep = set(exclude) | set(self.tables.names)
        dropped = await conn.run_sync(self._drop_all_sync, keep)
        self.logger.info('Dropped %d object(s): %s', len(dropped), ', '.join(dropped) or '-')
        return dropped

    def _drop_all_sync(self, sync_conn, keep: Collection[str]) -> List[str]:
        dropped = []
        preparer = sync_conn.dialect.identifier_preparer

        for view in inspect(sync_conn).get_view_names():
            sync_conn.exec_driver_sql(f"DROP VIEW {preparer.quote(view)}")
            dropped.append(view)

        metadata = MetaData()
        metadata.reflect(bind=sync_conn)
        tables = [t for t in metadata.sorted_tables if t.name not in keep]
        metadata.drop_all(bind=sync_conn, tables=tables)
        dropped.extend(t.name for t in tables)
        return dropped

    # ==================== Locking ====================

    async def acquire_lock(self, owner: str, timeout: float) -> None:
        """
        Acquire the migration lock.

        First the in-process lock, then the control row via an atomic
        conditional UPDATE, retried until the timeout expires.

        Raises:
            LockContention: If the lock cannot be acquired within timeout
        """
        try:
            async with asyncio.timeout(timeout):
                await self._local_lock.acquire()
        except TimeoutError:
            raise LockContention('another command in this process', timeout)

        try:
            await self._acquire_row_lock(owner, timeout)
        except BaseException:
            self._local_lock.release()
            raise

    async def _acquire_row_lock(self, owner: str, timeout: float) -> None:
        control = self.tables.control
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            now = datetime.now(timezone.utc)
            async with self.database.begin() as conn:
                result = await conn.execute(
                    update(control)
                    .where(control.c.id == CONTROL_ROW_ID, control.c.locked_by.is_(None))
                    .values(locked_by=owner, locked_at=now)
                )
                if result.rowcount == 1:
                    self.logger.debug('Migration lock acquired by %s', owner)
                    return

                row = (await conn.execute(
                    select(control.c.locked_by, control.c.locked_at)
                    .where(control.c.id == CONTROL_ROW_ID)
                )).first()

            holder = row.locked_by if row else None
            if row is not None and await self._take_over_stale(owner, row, now):
                return

            remaining = deadline - loop.time()
            if remaining <= 0:
                raise LockContention(holder, timeout)
            await asyncio.sleep(min(LOCK_POLL_INTERVAL, remaining))

    async def _take_over_stale(self, owner: str, row: Any, now: datetime) -> bool:
        if self.lock_stale_after is None or row.locked_at is None:
            return False

        locked_at = row.locked_at
        if locked_at.tzinfo is None:
            locked_at = locked_at.replace(tzinfo=timezone.utc)
        if (now - locked_at).total_seconds() <= self.lock_stale_after:
            return False

        control = self.tables.control
        async with self.database.begin() as conn:
            result = await conn.execute(
                update(control)
                .where(control.c.id == CONTROL_ROW_ID, control.c.locked_by == row.locked_by)
                .values(locked_by=owner, locked_at=now)
            )
        if result.rowcount == 1:
            self.logger.warning(
                'Took over stale migration lock from %s (held since %s)',
                row.locked_by,
                locked_at.isoformat(),
            )
            return True
        return False

    async def release_lock(self, owner: str) -> None:
        control = self.tables.control
        try:
            async with self.database.begin() as conn:
                result = await conn.execute(
                    update(control)
                    .where(control.c.id == CONTROL_ROW_ID, control.c.locked_by == owner)
                    .values(locked_by=None, locked_at=None)
                )
            if result.rowcount == 0:
                self.logger.warning('Migration lock was no longer held by %s', owner)
            else:
                self.logger.debug('Migration lock released by %s', owner)
        finally:
            if self._local_lock.locked():
                self._local_lock.release()
