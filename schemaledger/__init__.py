"""
schemaledger: versioned schema migrations with a durable ledger.

Example:
    from schemaledger import (
        Database, SQLAlchemyBackend, MigrationCommands,
        DirectoryMigrationSource, build_ledger_tables,
    )

    backend = SQLAlchemyBackend(Database('app.db'), build_ledger_tables())
    commands = MigrationCommands(backend, DirectoryMigrationSource(Path('migrations')))
    result = await commands.migrate()
"""

from .backends import SchemaBackend, SQLAlchemyBackend
from .commands import CommandResult, CommandStatus, MigrationCommands, MigrationStatusReport
from .config import MigratorConfig, configure_logging, load_config
from .database import Database
from .errors import (
    AlreadyRecorded,
    ConfigError,
    DuplicateMigrationName,
    IrreversibleMigration,
    LedgerError,
    LockContention,
    MigrationDefinitionError,
    MigrationError,
    NotRecorded,
    PartialMigrationFailure,
    SchemaLedgerError,
    UnknownMigration,
    ValidationFailed,
)
from .migrations import (
    DirectoryMigrationSource,
    InMemoryMigrationSource,
    MigrationDefinition,
    MigrationLedger,
    MigrationPlanner,
)
from .models import build_ledger_tables

__version__ = '0.1.0'

__all__ = [
    # Commands
    'MigrationCommands',
    'CommandResult',
    'CommandStatus',
    'MigrationStatusReport',
    # Wiring
    'Database',
    'SchemaBackend',
    'SQLAlchemyBackend',
    'build_ledger_tables',
    'MigratorConfig',
    'load_config',
    'configure_logging',
    # Migrations
    'MigrationDefinition',
    'InMemoryMigrationSource',
    'DirectoryMigrationSource',
    'MigrationLedger',
    'MigrationPlanner',
    # Errors
    'SchemaLedgerError',
    'ConfigError',
    'MigrationDefinitionError',
    'DuplicateMigrationName',
    'LedgerError',
    'AlreadyRecorded',
    'NotRecorded',
    'LockContention',
    'ValidationFailed',
    'MigrationError',
    'IrreversibleMigration',
    'UnknownMigration',
    'PartialMigrationFailure',
]
