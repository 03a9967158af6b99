#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
SQLAlchemy table definitions for the migration ledger
======================================================

Defines the two bookkeeping tables owned by the engine:
- schema_migrations: One row per applied migration (the ledger)
- schema_migrations_lock: Single control row holding the advisory lock
  and the batch high-water mark

Table names are configurable, so tables are built with SQLAlchemy Core
``Table`` objects on a private ``MetaData`` rather than declarative models.

Usage:
    from schemaledger.models import build_ledger_tables

    tables = build_ledger_tables('schema_migrations', 'schema_migrations_lock')

    async with engine.begin() as conn:
        await conn.run_sync(tables.metadata.create_all)
"""

from dataclasses import dataclass

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
)

DEFAULT_LEDGER_TABLE = 'schema_migrations'
DEFAULT_LOCK_TABLE = 'schema_migrations_lock'

# The control table always holds exactly one row with this id
CONTROL_ROW_ID = 1


@dataclass(frozen=True)
class LedgerTables:
    """
    Bookkeeping tables bound to one MetaData.

    Attributes:
        metadata: MetaData holding both tables
        entries: Ledger table (one row per applied migration)
        control: Single-row lock/high-water table
    """
    metadata: MetaData
    entries: Table
    control: Table

    @property
    def names(self) -> frozenset:
        """Table names excluded from the fresh sweep."""
        return frozenset({self.entries.name, self.control.name})


def build_ledger_tables(
    ledger_table: str = DEFAULT_LEDGER_TABLE,
    lock_table: str = DEFAULT_LOCK_TABLE,
) -> LedgerTables:
    """
    Build the ledger and control tables.

    Args:
        ledger_table: Name of the ledger table
        lock_table: Name of the control/lock table

    Returns:
        LedgerTables bound to a fresh MetaData
    """
    metadata = MetaData()

    entries = Table(
        ledger_table,
        metadata,
        Column('id', Integer, primary_key=True, autoincrement=True),
        Column(
            'migration_name',
            String(255),
            nullable=False,
            unique=True,
            comment='Migration identity (file stem)',
        ),
        Column(
            'batch',
            Integer,
            nullable=False,
            comment='Batch number shared by migrations applied together',
        ),
        Column('applied_at', DateTime(timezone=True), nullable=False),
        Column(
            'checksum',
            String(64),
            nullable=True,
            comment='SHA-256 of migration content at time of application',
        ),
        CheckConstraint('batch >= 1', name=f'ck_{ledger_table}_batch_positive'),
    )
    Index(f'ix_{ledger_table}_batch', entries.c.batch)

    control = Table(
        lock_table,
        metadata,
        Column('id', Integer, primary_key=True, autoincrement=False),
        Column('locked_by', String(255), nullable=True),
        Column('locked_at', DateTime(timezone=True), nullable=True),
        Column(
            'last_batch',
            Integer,
            nullable=False,
            default=0,
            comment='Highest batch number ever handed out',
        ),
        CheckConstraint(f'id = {CONTROL_ROW_ID}', name=f'ck_{lock_table}_single_row'),
    )

    return LedgerTables(metadata=metadata, entries=entries, control=control)
