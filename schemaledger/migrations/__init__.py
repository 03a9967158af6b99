"""
Schema migrations package.

This package provides:
- Operation variants: Structural edits as plain data
- MigrationDefinition: A named forward/backward pair of operation sequences
- MigrationSource: Discovery and loading of definitions
- MigrationLedger / LedgerSnapshot: Record of applied migrations
- MigrationPlanner: Plan computation from definitions and a snapshot
- MigrationValidator: Pre-flight safety checks
- MigrationExecutor: Plan execution with transaction safety
"""

from .ledger import LedgerSnapshot, MigrationLedger
from .migration import (
    Direction,
    LedgerEntry,
    MigrationDefinition,
    Plan,
    PlanStep,
    StepResult,
    compute_checksum,
)
from .migration_executor import MigrationExecutor
from .migration_source import (
    DirectoryMigrationSource,
    InMemoryMigrationSource,
    MigrationSource,
    write_migration_template,
)
from .migration_validator import MigrationValidator, ValidationWarning, WarningLevel
from .operations import (
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
    Operation,
    ReferentialAction,
    RenameColumn,
    RenameTable,
    operation_from_dict,
)
from .planner import MigrationPlanner

__all__ = [
    # Operations
    'Operation',
    'CreateTable',
    'DropTable',
    'RenameTable',
    'AddColumn',
    'DropColumn',
    'RenameColumn',
    'AddForeignKey',
    'DropForeignKey',
    'AddIndex',
    'DropIndex',
    'ExecuteSQL',
    'ColumnSpec',
    'ForeignKeySpec',
    'IndexSpec',
    'ReferentialAction',
    'operation_from_dict',
    # Definitions and plans
    'Direction',
    'MigrationDefinition',
    'LedgerEntry',
    'Plan',
    'PlanStep',
    'StepResult',
    'compute_checksum',
    # Sources
    'MigrationSource',
    'InMemoryMigrationSource',
    'DirectoryMigrationSource',
    'write_migration_template',
    # Ledger, planning, execution
    'MigrationLedger',
    'LedgerSnapshot',
    'MigrationPlanner',
    'MigrationValidator',
    'ValidationWarning',
    'WarningLevel',
    'MigrationExecutor',
]
