#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Integration tests for SQLAlchemyBackend on SQLite.

Covers every structural operation (including the ones SQLite can only
express by recreating the table), the fresh sweep and the migration lock.
"""
import asyncio
import logging

import pytest
from sqlalchemy import inspect, text

from schemaledger.backends.sqlalchemy_backend import SQLAlchemyBackend
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
    IndexSpec,
    RenameColumn,
    RenameTable,
)
from schemaledger.models import build_ledger_tables
from tests.fixtures.helpers import column_names, foreign_key_names, id_column, table_names


async def apply(backend, *operations):
    async with backend.transaction() as conn:
        for op in operations:
            await backend.apply(op, conn)


async def index_names(backend, table):
    async with backend.connection() as conn:
        indexes = await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_indexes(table))
    return sorted(ix['name'] for ix in indexes)


USERS = CreateTable('users', [id_column(), ColumnSpec('email', 'string', nullable=False)])
POSTS = CreateTable('posts', [id_column(), ColumnSpec('user_id', 'integer'), ColumnSpec('title', 'text')])


@pytest.fixture
async def second_backend(db_path):
    """Another backend (as if another process) on the same database file."""
    backend = SQLAlchemyBackend(Database(db_path), build_ledger_tables(), lock_stale_after=0.05)
    await backend.connect()
    yield backend
    await backend.close()


# ==================== Lifecycle ====================

class TestLifecycle:

    async def test_connect_creates_ledger_tables(self, backend):
        assert backend.is_connected
        async with backend.connection() as conn:
            names = await conn.run_sync(lambda c: inspect(c).get_table_names())
        assert backend.tables.names <= set(names)

    async def test_connect_twice(self, backend, db_path):
        other = SQLAlchemyBackend(Database(db_path), build_ledger_tables())
        await other.connect()
        await other.connect()
        await other.close()
        assert not other.is_connected

    async def test_sqlite_is_transactional(self, backend):
        assert backend.dialect == 'sqlite'
        assert backend.supports_transactional_ddl

    async def test_transactional_ddl_override(self, db_path):
        backend = SQLAlchemyBackend(Database(db_path), build_ledger_tables(), transactional_ddl=False)
        assert not backend.supports_transactional_ddl
        await backend.close()

    async def test_ddl_rolled_back_with_transaction(self, backend):
        with pytest.raises(RuntimeError):
            async with backend.transaction() as conn:
                await backend.apply(USERS, conn)
                raise RuntimeError('abort')
        assert await table_names(backend) == []


# ==================== Tables ====================

class TestTableOperations:

    async def test_create_table_with_foreign_keys_and_indexes(self, backend):
        await apply(backend, USERS, CreateTable(
            'posts',
            [id_column(), ColumnSpec('user_id', 'integer'), ColumnSpec('title', 'string', length=200)],
            foreign_keys=[ForeignKeySpec(['user_id'], 'users', ['id'], name='fk_posts_user',
                                         on_delete='cascade')],
            indexes=[IndexSpec('ix_posts_title', ['title'])],
        ))

        assert await table_names(backend) == ['posts', 'users']
        assert await column_names(backend, 'posts') == ['id', 'user_id', 'title']
        assert await foreign_key_names(backend, 'posts') == ['fk_posts_user']
        assert await index_names(backend, 'posts') == ['ix_posts_title']

    async def test_column_defaults(self, backend):
        await apply(backend, CreateTable('settings', [
            id_column(),
            ColumnSpec('enabled', 'boolean', nullable=False, server_default='1'),
        ]))
        async with backend.transaction() as conn:
            await conn.execute(text("INSERT INTO settings (id) VALUES (1)"))
            enabled = (await conn.execute(text("SELECT enabled FROM settings"))).scalar()
        assert enabled == 1

    async def test_drop_table(self, backend):
        await apply(backend, USERS)
        await apply(backend, DropTable('users'))
        assert await table_names(backend) == []

    async def test_rename_table(self, backend):
        await apply(backend, USERS, RenameTable('users', 'accounts'))
        assert await table_names(backend) == ['accounts']


# ==================== Columns ====================

class TestColumnOperations:

    async def test_add_column(self, backend):
        await apply(backend, USERS, AddColumn('users', ColumnSpec('age', 'integer')))
        assert await column_names(backend, 'users') == ['id', 'email', 'age']

    async def test_drop_column(self, backend):
        await apply(backend, USERS, DropColumn('users', 'email'))
        assert await column_names(backend, 'users') == ['id']

    async def test_rename_column_keeps_data(self, backend):
        await apply(backend, USERS)
        async with backend.transaction() as conn:
            await conn.execute(text("INSERT INTO users (email) VALUES ('a@example.com')"))

        await apply(backend, RenameColumn('users', 'email', 'mail'))

        assert await column_names(backend, 'users') == ['id', 'mail']
        async with backend.connection() as conn:
            mail = (await conn.execute(text("SELECT mail FROM users"))).scalar()
        assert mail == 'a@example.com'


# ==================== Constraints and indexes ====================

class TestConstraintOperations:

    async def test_add_and_drop_foreign_key(self, backend):
        await apply(backend, USERS, POSTS, AddForeignKey(
            name='fk_posts_user_id',
            table='posts',
            columns=['user_id'],
            referenced_table='users',
            referenced_columns=['id'],
            on_delete='cascade',
        ))

        async with backend.connection() as conn:
            [fk] = await conn.run_sync(lambda c: inspect(c).get_foreign_keys('posts'))
        assert fk['name'] == 'fk_posts_user_id'
        assert fk['referred_table'] == 'users'
        assert fk['options'].get('ondelete') == 'CASCADE'

        await apply(backend, DropForeignKey('fk_posts_user_id', 'posts'))
        assert await foreign_key_names(backend, 'posts') == []

    async def test_add_and_drop_index(self, backend):
        await apply(backend, USERS, AddIndex('ix_users_email', 'users', ['email'], unique=True))
        assert await index_names(backend, 'users') == ['ix_users_email']

        await apply(backend, DropIndex('ix_users_email', 'users'))
        assert await index_names(backend, 'users') == []


# ==================== Raw SQL ====================

class TestExecuteSQL:

    async def test_multiple_statements(self, backend):
        await apply(backend, ExecuteSQL(
            "-- lookup table\n"
            "CREATE TABLE colors (id INTEGER PRIMARY KEY, name TEXT);\n"
            "INSERT INTO colors (name) VALUES ('red');\n"
            "INSERT INTO colors (name) VALUES ('blue');\n"
        ))
        async with backend.connection() as conn:
            count = (await conn.execute(text("SELECT count(*) FROM colors"))).scalar()
        assert count == 2

    async def test_failing_statement_raises(self, backend):
        with pytest.raises(Exception):
            await apply(backend, ExecuteSQL("INSERT INTO missing_table VALUES (1);"))


# ==================== Fresh sweep ====================

class TestDropAll:

    async def test_drops_everything_but_ledger(self, backend):
        await apply(backend, USERS, POSTS, ExecuteSQL(
            "CREATE VIEW user_emails AS SELECT email FROM users;"
        ))

        async with backend.transaction() as conn:
            dropped = await backend.drop_all(conn)

        assert dropped[0] == 'user_emails'
        assert sorted(dropped[1:]) == ['posts', 'users']
        assert await table_names(backend) == []
        async with backend.connection() as conn:
            names = await conn.run_sync(lambda c: inspect(c).get_table_names())
        assert backend.tables.names <= set(names)

    async def test_exclude(self, backend):
        await apply(backend, USERS, POSTS)
        async with backend.transaction() as conn:
            await backend.drop_all(conn, exclude=['users'])
        assert await table_names(backend) == ['users']


# ==================== Locking ====================

class TestLocking:

    async def test_lock_context_releases(self, backend, second_backend):
        async with backend.lock('first', timeout=1.0):
            pass
        await second_backend.acquire_lock('second', timeout=0.5)
        await second_backend.release_lock('second')

    async def test_lock_released_on_error(self, backend, second_backend):
        with pytest.raises(RuntimeError):
            async with backend.lock('first', timeout=1.0):
                raise RuntimeError('boom')
        await second_backend.acquire_lock('second', timeout=0.5)
        await second_backend.release_lock('second')

    async def test_contention_between_processes(self, backend, db_path):
        other = SQLAlchemyBackend(Database(db_path), build_ledger_tables())
        await other.connect()
        try:
            await backend.acquire_lock('first', timeout=1.0)
            with pytest.raises(LockContention) as exc_info:
                await other.acquire_lock('second', timeout=0.3)
            assert exc_info.value.holder == 'first'

            await backend.release_lock('first')
            await other.acquire_lock('second', timeout=1.0)
            await other.release_lock('second')
        finally:
            await other.close()

    async def test_contention_within_process(self, backend):
        await backend.acquire_lock('first', timeout=1.0)
        try:
            with pytest.raises(LockContention):
                await backend.acquire_lock('second', timeout=0.1)
        finally:
            await backend.release_lock('first')
        await backend.acquire_lock('second', timeout=0.1)
        await backend.release_lock('second')

    async def test_stale_lock_taken_over(self, backend, second_backend, caplog):
        await backend.acquire_lock('crashed', timeout=1.0)
        await asyncio.sleep(0.1)

        with caplog.at_level(logging.WARNING):
            await second_backend.acquire_lock('second', timeout=1.0)
            assert 'stale' in caplog.text

            # The original owner no longer holds it
            await backend.release_lock('crashed')
            assert 'no longer held' in caplog.text

        await second_backend.release_lock('second')

    async def test_no_takeover_by_default(self, backend, db_path):
        other = SQLAlchemyBackend(Database(db_path), build_ledger_tables())
        await other.connect()
        try:
            await backend.acquire_lock('first', timeout=1.0)
            await asyncio.sleep(0.1)
            with pytest.raises(LockContention):
                await other.acquire_lock('second', timeout=0.2)
        finally:
            await backend.release_lock('first')
            await other.close()
