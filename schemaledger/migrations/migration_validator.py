#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration validation for safety and compatibility checks.

Validates migration definitions before they run forward: destructive
operations, structural mistakes, raw SQL syntax and SQLite limitations.
Provides warnings at different severity levels (INFO, WARNING, ERROR);
any ERROR refuses the whole command before anything executes.
"""
import re
from collections import Counter
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional

import sqlparse

from schemaledger.migrations.migration import MigrationDefinition
from schemaledger.migrations.operations import (
    AddColumn,
    AddForeignKey,
    AddIndex,
    CreateTable,
    DropColumn,
    DropTable,
    ExecuteSQL,
)


class WarningLevel(Enum):
    """Severity levels for validation warnings."""
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class ValidationWarning:
    """
    Warning from migration validation.

    Attributes:
        level: Severity level (INFO, WARNING, ERROR)
        message: Human-readable warning message
        migration_name: Migration that triggered the warning
        category: Warning category ('checksum', 'destructive', 'irreversible',
            'structure', 'sqlite', 'syntax')

    Example:
        >>> warning = ValidationWarning(
        ...     level=WarningLevel.WARNING,
        ...     message="Drops table posts (all table data will be deleted)",
        ...     migration_name="003_drop_posts",
        ...     category="destructive"
        ... )
        >>> print(warning)
        [WARNING] Migration 003_drop_posts: Drops table posts (all table data will be deleted)
    """
    level: WarningLevel
    message: str
    migration_name: str
    category: str

    def to_dict(self) -> dict:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary with all fields, level as string value
        """
        return {
            'level': self.level.value,
            'message': self.message,
            'migration_name': self.migration_name,
            'category': self.category
        }

    def __str__(self) -> str:
        return f"[{self.level.value}] Migration {self.migration_name}: {self.message}"


class MigrationValidator:
    """
    Validates migration definitions for safety and compatibility issues.

    Performs multiple validation checks:
    - Destructive operations (drop_table, drop_column, DROP/TRUNCATE in SQL)
    - Irreversible migrations
    - Structural mistakes (mismatched foreign keys, duplicate columns,
      indexes without columns)
    - Raw SQL syntax (parentheses, string quotes, statement parsing)
    - SQLite limitations (if dialect='sqlite')
    - Checksum verification (tamper detection)

    Attributes:
        dialect: Database dialect ('sqlite', 'postgresql', etc.)

    Example:
        >>> validator = MigrationValidator(dialect='sqlite')
        >>> warnings = validator.validate_migration(migration)
        >>> for w in warnings:
        ...     if w.level == WarningLevel.ERROR:
        ...         print(f"ERROR: {w.message}")
    """

    DROP_PATTERN = re.compile(r'\bDROP\s+(TABLE|COLUMN|VIEW|INDEX)\b', re.IGNORECASE)
    TRUNCATE_PATTERN = re.compile(r'\bTRUNCATE\b', re.IGNORECASE)
    ALTER_COLUMN_PATTERN = re.compile(r'\bALTER\s+COLUMN\b', re.IGNORECASE)
    ADD_CONSTRAINT_PATTERN = re.compile(r'\bADD\s+CONSTRAINT\b', re.IGNORECASE)

    def __init__(self, dialect: str = 'sqlite'):
        """
        Initialize validator.

        Args:
            dialect: Database dialect ('sqlite', 'postgresql', etc.)
        """
        self.dialect = dialect.lower()

    def validate(self, definitions: Iterable[MigrationDefinition]) -> List[ValidationWarning]:
        """Validate several definitions, in order."""
        warnings = []
        for definition in definitions:
            warnings.extend(self.validate_migration(definition))
        return warnings

    def validate_migration(self, migration: MigrationDefinition) -> List[ValidationWarning]:
        """
        Validate a migration for safety and compatibility issues.

        Only the forward sequence is checked for destructive operations;
        backward sequences are destructive by nature.

        Args:
            migration: Definition to validate

        Returns:
            List of ValidationWarning objects (empty if no issues)
        """
        warnings = []

        warnings.extend(self._check_destructive_operations(migration))

        if not migration.is_reversible:
            warnings.append(self._warning(
                WarningLevel.INFO,
                "Migration is irreversible (no backward operations); "
                "rollback will stop at it",
                migration,
                'irreversible',
            ))

        warnings.extend(self._check_structure(migration))
        warnings.extend(self._check_syntax(migration))

        if self.dialect == 'sqlite':
            warnings.extend(self._check_sqlite_limitations(migration))

        return warnings

    def verify_checksum(
        self,
        migration: MigrationDefinition,
        stored_checksum: Optional[str],
    ) -> List[ValidationWarning]:
        """
        Verify a definition's checksum against the one recorded when it was applied.

        Returns:
            List with ERROR warning if mismatch, empty list if match or if no
            checksum was recorded
        """
        if stored_checksum is None or migration.checksum == stored_checksum:
            return []
        return [self._warning(
            WarningLevel.ERROR,
            f"Migration has been modified since it was applied (checksum mismatch). "
            f"Expected: {stored_checksum[:8]}..., Got: {migration.checksum[:8]}...",
            migration,
            'checksum',
        )]

    @staticmethod
    def has_errors(warnings: Iterable[ValidationWarning]) -> bool:
        return any(w.level == WarningLevel.ERROR for w in warnings)

    def _warning(self, level, message, migration, category) -> ValidationWarning:
        return ValidationWarning(
            level=level,
            message=message,
            migration_name=migration.name,
            category=category,
        )

    def _sql_operations(self, migration: MigrationDefinition) -> List[ExecuteSQL]:
        return [op for op in migration.forward if isinstance(op, ExecuteSQL)]

    def _check_destructive_operations(self, migration: MigrationDefinition) -> List[ValidationWarning]:
        """
        Check for operations that destroy data.

        All generate WARNING level (not ERROR) to allow execution with acknowledgment.
        """
        warnings = []

        for op in migration.forward:
            if isinstance(op, DropTable):
                warnings.append(self._warning(
                    WarningLevel.WARNING,
                    f"Drops table {op.table} (all table data will be deleted). "
                    "Ensure data is backed up or no longer needed.",
                    migration,
                    'destructive',
                ))
            elif isinstance(op, DropColumn):
                warnings.append(self._warning(
                    WarningLevel.WARNING,
                    f"Drops column {op.table}.{op.column} (potential data loss). "
                    "Ensure column data is no longer needed or backed up.",
                    migration,
                    'destructive',
                ))

        for op in self._sql_operations(migration):
            sql = _strip_comments(op.sql)
            if self.DROP_PATTERN.search(sql):
                warnings.append(self._warning(
                    WarningLevel.WARNING,
                    "Raw SQL drops a database object (potential data loss).",
                    migration,
                    'destructive',
                ))
            if self.TRUNCATE_PATTERN.search(sql):
                warnings.append(self._warning(
                    WarningLevel.WARNING,
                    "Raw SQL truncates a table (all rows will be deleted).",
                    migration,
                    'destructive',
                ))

        return warnings

    def _check_structure(self, migration: MigrationDefinition) -> List[ValidationWarning]:
        """Check structural operations for mistakes the database would reject."""
        warnings = []

        for op in migration.forward:
            if isinstance(op, CreateTable):
                counts = Counter(col.name for col in op.columns)
                for name, count in counts.items():
                    if count > 1:
                        warnings.append(self._warning(
                            WarningLevel.ERROR,
                            f"Table {op.table} declares column {name} {count} times",
                            migration,
                            'structure',
                        ))
                for fk in op.foreign_keys:
                    if len(fk.columns) != len(fk.referenced_columns):
                        warnings.append(self._warning(
                            WarningLevel.ERROR,
                            f"Foreign key on {op.table} maps {len(fk.columns)} column(s) "
                            f"to {len(fk.referenced_columns)} referenced column(s)",
                            migration,
                            'structure',
                        ))
                for index in op.indexes:
                    if not index.columns:
                        warnings.append(self._warning(
                            WarningLevel.ERROR,
                            f"Index {index.name} on {op.table} has no columns",
                            migration,
                            'structure',
                        ))
            elif isinstance(op, AddForeignKey):
                if len(op.columns) != len(op.referenced_columns):
                    warnings.append(self._warning(
                        WarningLevel.ERROR,
                        f"Foreign key {op.name} maps {len(op.columns)} column(s) "
                        f"to {len(op.referenced_columns)} referenced column(s)",
                        migration,
                        'structure',
                    ))
            elif isinstance(op, AddIndex):
                if not op.columns:
                    warnings.append(self._warning(
                        WarningLevel.ERROR,
                        f"Index {op.name} on {op.table} has no columns",
                        migration,
                        'structure',
                    ))

        return warnings

    def _check_syntax(self, migration: MigrationDefinition) -> List[ValidationWarning]:
        """
        Check raw SQL for basic syntax errors.

        Performs simple checks that catch common errors:
        - Unmatched parentheses
        - Unterminated strings (odd number of quotes)
        - Text that does not split into any statement

        These are basic heuristics and may have false positives/negatives,
        but catch most common syntax errors before execution.
        """
        warnings = []

        for op in self._sql_operations(migration):
            sql = _strip_comments(op.sql)

            open_parens = sql.count('(')
            close_parens = sql.count(')')
            if open_parens != close_parens:
                warnings.append(self._warning(
                    WarningLevel.ERROR,
                    f"Unmatched parentheses: {open_parens} open, {close_parens} close",
                    migration,
                    'syntax',
                ))

            # Simplified; doesn't handle escapes
            single_quotes = sql.count("'")
            if single_quotes % 2 != 0:
                warnings.append(self._warning(
                    WarningLevel.ERROR,
                    f"Unterminated string (odd number of single quotes: {single_quotes})",
                    migration,
                    'syntax',
                ))

            statements = [s for s in sqlparse.split(sql) if s.strip()]
            if not statements:
                warnings.append(self._warning(
                    WarningLevel.ERROR,
                    "SQL text contains no statements",
                    migration,
                    'syntax',
                ))

        return warnings

    def _check_sqlite_limitations(self, migration: MigrationDefinition) -> List[ValidationWarning]:
        """
        Check for operations SQLite cannot run.

        Structured column drops, renames and foreign key changes are handled
        by table recreation, so only raw SQL and column additions are checked.
        """
        warnings = []

        for op in migration.forward:
            if isinstance(op, AddColumn) and (op.column.unique or op.column.primary_key):
                warnings.append(self._warning(
                    WarningLevel.ERROR,
                    f"SQLite cannot add UNIQUE or PRIMARY KEY column "
                    f"{op.table}.{op.column.name}. Add the column, then a unique index.",
                    migration,
                    'sqlite',
                ))

        for op in self._sql_operations(migration):
            sql = _strip_comments(op.sql)
            if self.ALTER_COLUMN_PATTERN.search(sql):
                warnings.append(self._warning(
                    WarningLevel.ERROR,
                    "SQLite does not support ALTER COLUMN directly. "
                    "Use rename_column / drop_column operations instead.",
                    migration,
                    'sqlite',
                ))
            if self.ADD_CONSTRAINT_PATTERN.search(sql):
                warnings.append(self._warning(
                    WarningLevel.ERROR,
                    "SQLite does not support ADD CONSTRAINT directly. "
                    "Use add_foreign_key or define constraints in create_table.",
                    migration,
                    'sqlite',
                ))

        return warnings


def _strip_comments(sql: str) -> str:
    """Remove SQL comments before checking."""
    return sqlparse.format(sql, strip_comments=True)
