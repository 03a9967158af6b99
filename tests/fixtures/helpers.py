"""
Helpers for building migrations and inspecting the test database.
"""
from sqlalchemy import inspect

from schemaledger.migrations.migration import MigrationDefinition
from schemaledger.migrations.operations import ColumnSpec, CreateTable, DropTable


def id_column():
    return ColumnSpec('id', 'integer', primary_key=True, autoincrement=True)


def create_table_migration(name, table, *columns, irreversible=False):
    """Migration creating table with an id column plus columns."""
    return MigrationDefinition(
        name=name,
        forward=[CreateTable(table, [id_column(), *columns])],
        backward=[] if irreversible else [DropTable(table)],
        irreversible=irreversible,
    )


async def table_names(backend):
    """User table names, excluding the ledger tables."""
    async with backend.connection() as conn:
        names = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
    return sorted(set(names) - backend.tables.names)


async def column_names(backend, table):
    async with backend.connection() as conn:
        columns = await conn.run_sync(
            lambda sync_conn: inspect(sync_conn).get_columns(table)
        )
    return [c['name'] for c in columns]


async def foreign_key_names(backend, table):
    async with backend.connection() as conn:
        fks = await conn.run_sync(
            lambda sync_conn: inspect(sync_conn).get_foreign_keys(table)
        )
    return [fk['name'] for fk in fks]
