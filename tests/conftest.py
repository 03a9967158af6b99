"""
Global pytest configuration and fixtures for schemaledger tests

Provides:
- File-backed SQLite database and backend per test
- Ledger and command surface wired to that backend
- Sample migration definitions
"""

import pytest

from schemaledger.commands import MigrationCommands
from schemaledger.database import Database
from schemaledger.migrations.ledger import MigrationLedger
from schemaledger.migrations.migration import MigrationDefinition
from schemaledger.migrations.migration_source import InMemoryMigrationSource
from schemaledger.migrations.operations import AddForeignKey, ColumnSpec, DropForeignKey
from schemaledger.models import build_ledger_tables
from tests.fixtures.helpers import create_table_migration
from tests.fixtures.recording_backend import RecordingBackend


# ============================================================================
# Database / backend
# ============================================================================

@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / 'test.db')


@pytest.fixture
async def backend(db_path):
    """Connected recording backend on a fresh SQLite file."""
    backend = RecordingBackend(Database(db_path), build_ledger_tables())
    await backend.connect()
    yield backend
    await backend.close()


@pytest.fixture
async def ledger(backend):
    return MigrationLedger(backend)


# ============================================================================
# Migrations
# ============================================================================

@pytest.fixture
def users_migration():
    return create_table_migration(
        '001_create_users', 'users',
        ColumnSpec('email', 'string', length=255, nullable=False, unique=True),
    )


@pytest.fixture
def posts_migration():
    return create_table_migration(
        '002_create_posts', 'posts',
        ColumnSpec('user_id', 'integer'),
        ColumnSpec('title', 'string', length=200),
    )


@pytest.fixture
def posts_fk_migration():
    return MigrationDefinition(
        name='003_add_posts_user_fk',
        forward=[AddForeignKey(
            name='fk_posts_user_id',
            table='posts',
            columns=['user_id'],
            referenced_table='users',
            referenced_columns=['id'],
            on_delete='cascade',
        )],
        backward=[DropForeignKey('fk_posts_user_id', 'posts')],
    )


@pytest.fixture
def source(users_migration, posts_migration):
    return InMemoryMigrationSource([users_migration, posts_migration])


@pytest.fixture
def commands(backend, source):
    return MigrationCommands(backend, source, lock_timeout=1.0, owner='test-runner')
