#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Unit tests for MigrationValidator.

Tests validation logic for destructive operations, structural mistakes,
SQLite limitations, syntax checking, and checksum verification.
"""
import pytest

from schemaledger.migrations.migration import MigrationDefinition
from schemaledger.migrations.migration_validator import (
    MigrationValidator,
    ValidationWarning,
    WarningLevel,
)
from schemaledger.migrations.operations import (
    AddColumn,
    AddForeignKey,
    AddIndex,
    ColumnSpec,
    CreateTable,
    DropColumn,
    DropTable,
    ExecuteSQL,
    ForeignKeySpec,
    IndexSpec,
    RenameColumn,
)


# ==================== Test Fixtures ====================

@pytest.fixture
def validator_sqlite():
    """SQLite validator instance."""
    return MigrationValidator(dialect='sqlite')


@pytest.fixture
def validator_postgresql():
    """PostgreSQL validator instance."""
    return MigrationValidator(dialect='postgresql')


@pytest.fixture
def migration_template():
    """Template for creating test migrations."""
    def _create(name, *forward):
        return MigrationDefinition(
            name=name,
            forward=list(forward),
            backward=[ExecuteSQL('SELECT 1')],
        )
    return _create


def by_category(warnings, category):
    return [w for w in warnings if w.category == category]


# ==================== Destructive Operations Tests ====================

class TestDestructiveOperations:
    """Test detection of destructive operations."""

    def test_drop_table_warning(self, validator_sqlite, migration_template):
        """drop_table triggers WARNING."""
        migration = migration_template('003_drop_posts', DropTable('posts'))

        warnings = by_category(validator_sqlite.validate_migration(migration), 'destructive')

        assert len(warnings) == 1
        assert warnings[0].level == WarningLevel.WARNING
        assert 'deleted' in warnings[0].message.lower()

    def test_drop_column_warning(self, validator_sqlite, migration_template):
        """drop_column triggers WARNING but no SQLite error (handled by recreation)."""
        migration = migration_template('004_drop_email', DropColumn('users', 'email'))

        warnings = validator_sqlite.validate_migration(migration)

        destructive = by_category(warnings, 'destructive')
        assert len(destructive) == 1
        assert 'data loss' in destructive[0].message.lower()
        assert by_category(warnings, 'sqlite') == []

    def test_truncate_in_sql(self, validator_sqlite, migration_template):
        migration = migration_template('005_truncate', ExecuteSQL('TRUNCATE TABLE temp_data;'))

        warnings = by_category(validator_sqlite.validate_migration(migration), 'destructive')

        assert len(warnings) == 1
        assert 'truncates' in warnings[0].message

    def test_drop_in_sql(self, validator_postgresql, migration_template):
        migration = migration_template('006_drop', ExecuteSQL('DROP VIEW active_users;'))

        warnings = by_category(validator_postgresql.validate_migration(migration), 'destructive')

        assert len(warnings) == 1

    def test_drop_in_comment_ignored(self, validator_sqlite, migration_template):
        migration = migration_template(
            '007_safe',
            ExecuteSQL("-- DROP TABLE users would be bad\nUPDATE users SET active = 1;"),
        )
        assert validator_sqlite.validate_migration(migration) == []

    def test_backward_not_checked(self, validator_sqlite):
        """Backward sequences are destructive by nature."""
        migration = MigrationDefinition(
            '001_create_users',
            forward=[CreateTable('users', [ColumnSpec('id', 'integer', primary_key=True)])],
            backward=[DropTable('users')],
        )
        assert validator_sqlite.validate_migration(migration) == []


# ==================== Irreversible ====================

class TestIrreversible:

    def test_irreversible_info(self, validator_sqlite):
        migration = MigrationDefinition(
            '001_seed',
            forward=[ExecuteSQL("INSERT INTO settings (k, v) VALUES ('a', 'b');")],
            irreversible=True,
        )
        [warning] = validator_sqlite.validate_migration(migration)
        assert warning.level == WarningLevel.INFO
        assert warning.category == 'irreversible'


# ==================== Structure ====================

class TestStructure:
    """Test structural mistakes reported as ERROR."""

    def test_duplicate_columns(self, validator_sqlite, migration_template):
        migration = migration_template('001_users', CreateTable('users', [
            ColumnSpec('id', 'integer', primary_key=True),
            ColumnSpec('email', 'string'),
            ColumnSpec('email', 'text'),
        ]))

        [error] = by_category(validator_sqlite.validate_migration(migration), 'structure')

        assert error.level == WarningLevel.ERROR
        assert 'email' in error.message

    def test_foreign_key_column_mismatch(self, validator_sqlite, migration_template):
        migration = migration_template('002_fk', AddForeignKey(
            name='fk_bad',
            table='posts',
            columns=['user_id', 'org_id'],
            referenced_table='users',
            referenced_columns=['id'],
        ))

        [error] = by_category(validator_sqlite.validate_migration(migration), 'structure')

        assert 'fk_bad' in error.message

    def test_inline_foreign_key_mismatch(self, validator_sqlite, migration_template):
        migration = migration_template('002_posts', CreateTable(
            'posts',
            [ColumnSpec('id', 'integer', primary_key=True)],
            foreign_keys=[ForeignKeySpec(['user_id'], 'users', ['id', 'org_id'])],
        ))
        assert len(by_category(validator_sqlite.validate_migration(migration), 'structure')) == 1

    def test_index_without_columns(self, validator_sqlite, migration_template):
        migration = migration_template(
            '003_index',
            AddIndex('ix_empty', 'users', []),
            CreateTable('posts', [ColumnSpec('id', 'integer')], indexes=[IndexSpec('ix_none', [])]),
        )
        errors = by_category(validator_sqlite.validate_migration(migration), 'structure')
        assert {('ix_empty' in e.message) or ('ix_none' in e.message) for e in errors} == {True}
        assert len(errors) == 2


# ==================== SQLite Limitation Tests ====================

class TestSQLiteLimitations:
    """Test SQLite-only errors."""

    def test_alter_column_sqlite(self, validator_sqlite, migration_template):
        migration = migration_template(
            '001_alter', ExecuteSQL('ALTER TABLE users ALTER COLUMN email TYPE TEXT;')
        )
        [error] = by_category(validator_sqlite.validate_migration(migration), 'sqlite')
        assert error.level == WarningLevel.ERROR
        assert 'ALTER COLUMN' in error.message

    def test_add_constraint_sqlite(self, validator_sqlite, migration_template):
        migration = migration_template(
            '001_constraint',
            ExecuteSQL('ALTER TABLE posts ADD CONSTRAINT fk FOREIGN KEY (user_id) REFERENCES users (id);'),
        )
        [error] = by_category(validator_sqlite.validate_migration(migration), 'sqlite')
        assert 'ADD CONSTRAINT' in error.message

    def test_unique_column_sqlite(self, validator_sqlite, migration_template):
        migration = migration_template(
            '001_add', AddColumn('users', ColumnSpec('handle', 'string', unique=True))
        )
        assert len(by_category(validator_sqlite.validate_migration(migration), 'sqlite')) == 1

    def test_postgresql_allows_alter(self, validator_postgresql, migration_template):
        migration = migration_template(
            '001_alter',
            ExecuteSQL('ALTER TABLE users ALTER COLUMN email TYPE TEXT;'),
            AddColumn('users', ColumnSpec('handle', 'string', unique=True)),
        )
        assert validator_postgresql.validate_migration(migration) == []

    def test_structured_rename_allowed(self, validator_sqlite, migration_template):
        migration = migration_template('001_rename', RenameColumn('users', 'mail', 'email'))
        assert validator_sqlite.validate_migration(migration) == []


# ==================== Syntax Tests ====================

class TestSyntax:
    """Test basic raw SQL syntax checks."""

    def test_unmatched_parentheses(self, validator_sqlite, migration_template):
        migration = migration_template(
            '001_bad', ExecuteSQL('CREATE TABLE t (id INTEGER, name TEXT;')
        )
        [error] = by_category(validator_sqlite.validate_migration(migration), 'syntax')
        assert 'parentheses' in error.message.lower()

    def test_unterminated_string(self, validator_sqlite, migration_template):
        migration = migration_template(
            '001_bad', ExecuteSQL("INSERT INTO t (name) VALUES ('oops);")
        )
        errors = by_category(validator_sqlite.validate_migration(migration), 'syntax')
        assert any('quote' in e.message.lower() for e in errors)

    def test_comment_only_sql(self, validator_sqlite, migration_template):
        migration = migration_template('001_empty', ExecuteSQL('-- nothing to do here'))
        [error] = by_category(validator_sqlite.validate_migration(migration), 'syntax')
        assert 'no statements' in error.message

    def test_valid_multi_statement(self, validator_sqlite, migration_template):
        migration = migration_template('001_ok', ExecuteSQL(
            "CREATE TABLE t (id INTEGER PRIMARY KEY, name TEXT DEFAULT 'x');\n"
            "INSERT INTO t (name) VALUES ('it''s');"
        ))
        assert validator_sqlite.validate_migration(migration) == []


# ==================== Checksums and helpers ====================

class TestChecksumAndHelpers:

    def test_checksum_match(self, validator_sqlite, migration_template):
        migration = migration_template('001_a', ExecuteSQL('SELECT 1'))
        assert validator_sqlite.verify_checksum(migration, migration.checksum) == []
        assert validator_sqlite.verify_checksum(migration, None) == []

    def test_checksum_mismatch(self, validator_sqlite, migration_template):
        migration = migration_template('001_a', ExecuteSQL('SELECT 1'))
        [error] = validator_sqlite.verify_checksum(migration, '0' * 64)
        assert error.level == WarningLevel.ERROR
        assert error.category == 'checksum'

    def test_validate_many_and_has_errors(self, validator_sqlite, migration_template):
        warnings = validator_sqlite.validate([
            migration_template('001_ok', ExecuteSQL('SELECT 1')),
            migration_template('002_bad', ExecuteSQL('SELECT (1')),
        ])
        assert [w.migration_name for w in warnings] == ['002_bad']
        assert MigrationValidator.has_errors(warnings)

    def test_warning_rendering(self):
        warning = ValidationWarning(
            level=WarningLevel.WARNING,
            message='Drops table posts',
            migration_name='003_drop_posts',
            category='destructive',
        )
        assert str(warning) == '[WARNING] Migration 003_drop_posts: Drops table posts'
        assert warning.to_dict() == {
            'level': 'WARNING',
            'message': 'Drops table posts',
            'migration_name': '003_drop_posts',
            'category': 'destructive',
        }
