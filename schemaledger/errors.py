"""
Migration engine exceptions.

This module defines the exception hierarchy for the migration engine,
enabling precise error handling at different layers of the application.

Every exception carries a machine-readable ``code``, a human-readable
``message`` and an optional ``details`` dict, so command results can be
rendered as structured responses without parsing exception text.
"""

from typing import Any, Optional, Sequence


class SchemaLedgerError(Exception):
    """
    Base exception for migration engine errors.

    All engine exceptions inherit from this base class,
    allowing catch-all error handling when needed.
    """

    code = "SCHEMALEDGER_ERROR"

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        """
        Initialize error.

        Args:
            message: Human-readable error message
            details: Optional dict of additional context
        """
        self.message = message
        self.details = details or {}
        super().__init__(f"[{self.code}] {message}")

    def to_dict(self) -> dict[str, Any]:
        """Render error as a JSON-friendly dict."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# ==================== Definition Errors ====================

class MigrationDefinitionError(SchemaLedgerError):
    """
    Migration definition is malformed.

    Raised when:
    - Forward sequence is empty
    - Backward sequence is empty without the irreversible flag
    - Operation data has an unknown kind or missing parameters
    - Migration file cannot be parsed
    """

    code = "INVALID_DEFINITION"


class DuplicateMigrationName(MigrationDefinitionError):
    """
    Two migration definitions share the same identity.

    Raised at load time; fatal to loading the migration set.
    """

    code = "DUPLICATE_MIGRATION_NAME"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Duplicate migration name '{name}'",
            {"migration": name},
        )


# ==================== Ledger Errors ====================

class LedgerError(SchemaLedgerError):
    """
    Ledger misuse.

    These indicate a programming error in the caller (recording a
    migration twice, reverting one that was never recorded) and are
    never expected during normal plan execution.
    """

    code = "LEDGER_ERROR"


class AlreadyRecorded(LedgerError):
    """Migration name is already present in the ledger."""

    code = "ALREADY_RECORDED"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Migration '{name}' is already recorded in the ledger",
            {"migration": name},
        )


class NotRecorded(LedgerError):
    """Migration name is absent from the ledger."""

    code = "NOT_RECORDED"

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            f"Migration '{name}' is not recorded in the ledger",
            {"migration": name},
        )


# ==================== Locking ====================

class LockContention(SchemaLedgerError):
    """
    Another execution holds the migration lock.

    Raised when:
    - The advisory lock could not be acquired within the timeout
    - The in-process lock is held by a concurrent command

    Callers should retry or abort; the engine never proceeds unlocked.
    """

    code = "LOCK_CONTENTION"

    def __init__(self, holder: Optional[str], timeout: float) -> None:
        self.holder = holder
        self.timeout = timeout
        super().__init__(
            f"Migration lock held by {holder or 'another process'} "
            f"(waited {timeout}s)",
            {"holder": holder, "timeout": timeout},
        )


# ==================== Validation ====================

class ValidationFailed(SchemaLedgerError):
    """
    Pre-flight validation reported ERROR level warnings.

    Nothing is executed when this is raised.
    """

    code = "VALIDATION_FAILED"

    def __init__(self, warnings: Sequence[Any]) -> None:
        self.warnings = list(warnings)
        super().__init__(
            f"Migrations failed validation: {len(self.warnings)} error(s)",
            {"errors": [w.to_dict() for w in self.warnings]},
        )


# ==================== Plan Execution Errors ====================

class MigrationError(SchemaLedgerError):
    """
    Plan execution halted.

    Attributes:
        migration_name: Migration the plan halted on
        completed: StepResults of migrations fully completed before the
            halt (filled in by the executor)
    """

    code = "MIGRATION_FAILED"

    def __init__(
        self,
        migration_name: str,
        message: str,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.migration_name = migration_name
        self.completed: list[Any] = []
        details = dict(details or {})
        details.setdefault("migration", migration_name)
        super().__init__(message, details)


class IrreversibleMigration(MigrationError):
    """
    Rollback requested for a migration with no backward sequence.

    Migrations reversed earlier in the same plan stay reversed.
    """

    code = "IRREVERSIBLE_MIGRATION"

    def __init__(self, migration_name: str) -> None:
        super().__init__(
            migration_name,
            f"Migration '{migration_name}' is irreversible "
            f"(no backward operations)",
        )


class UnknownMigration(MigrationError):
    """
    Ledger references a migration the source no longer provides.

    Such a migration cannot be reversed because its backward
    sequence is unknown.
    """

    code = "UNKNOWN_MIGRATION"

    def __init__(self, migration_name: str) -> None:
        super().__init__(
            migration_name,
            f"Applied migration '{migration_name}' not found in migration source",
        )


class PartialMigrationFailure(MigrationError):
    """
    An operation inside a migration failed.

    Attributes:
        direction: 'forward' or 'backward'
        completed_operations: Descriptions of operations that succeeded
            before the failure
        failed_operation: Description of the operation that failed
        rolled_back: True if the backend undid the completed operations
            as part of a transaction rollback
    """

    code = "PARTIAL_MIGRATION_FAILURE"

    def __init__(
        self,
        migration_name: str,
        direction: str,
        completed_operations: Sequence[str],
        failed_operation: str,
        cause: BaseException,
        rolled_back: bool,
    ) -> None:
        self.direction = direction
        self.completed_operations = list(completed_operations)
        self.failed_operation = failed_operation
        self.cause = cause
        self.rolled_back = rolled_back
        super().__init__(
            migration_name,
            f"Migration '{migration_name}' failed ({direction}) at "
            f"operation {len(self.completed_operations) + 1}: "
            f"{failed_operation}: {cause}",
            {
                "direction": direction,
                "completed_operations": self.completed_operations,
                "failed_operation": failed_operation,
                "cause": str(cause),
                "rolled_back": rolled_back,
            },
        )


# ==================== Configuration ====================

class ConfigError(SchemaLedgerError):
    """Configuration file is missing or invalid."""

    code = "INVALID_CONFIG"
