"""
Command surface for the migration engine.

Each verb runs the same pipeline:

1. Ensure the ledger tables exist
2. Acquire the migration lock (released on every exit path)
3. Take one ledger snapshot
4. Compute the plan from the snapshot
5. Validate the definitions about to run forward
6. Execute the plan

and returns a CommandResult with a definitive status, so callers can tell
"nothing to do" from "succeeded" from "failed midway" without parsing logs.
Ledger misuse (LedgerError) is a programming error and is re-raised.
"""

import logging
import os
import socket
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional

from schemaledger.errors import (
    IrreversibleMigration,
    LedgerError,
    LockContention,
    PartialMigrationFailure,
    SchemaLedgerError,
    UnknownMigration,
    ValidationFailed,
)
from schemaledger.migrations.ledger import LedgerSnapshot, MigrationLedger
from schemaledger.migrations.migration import LedgerEntry, Plan, StepResult
from schemaledger.migrations.migration_executor import MigrationExecutor
from schemaledger.migrations.migration_source import MigrationSource
from schemaledger.migrations.migration_validator import (
    MigrationValidator,
    ValidationWarning,
    WarningLevel,
)
from schemaledger.migrations.planner import MigrationPlanner

logger = logging.getLogger(__name__)


class CommandStatus(str, Enum):
    """Outcome of a command."""
    SUCCESS = "success"
    NO_OP = "no_op"
    PARTIAL_FAILURE = "partial_failure"
    LOCK_CONTENTION = "lock_contention"
    IRREVERSIBLE = "irreversible"
    UNKNOWN_MIGRATION = "unknown_migration"
    VALIDATION_FAILED = "validation_failed"


@dataclass
class CommandResult:
    """
    Result of a migration command.

    Attributes:
        status: Outcome
        command: Verb that ran ('migrate', 'rollback', ...)
        executed: Steps that fully completed, in order
        error: Error that halted the command, if any
        warnings: Validation warnings for the forward definitions
        dry_run: True if nothing was actually executed
    """
    status: CommandStatus
    command: str
    executed: List[StepResult] = field(default_factory=list)
    error: Optional[SchemaLedgerError] = None
    warnings: List[ValidationWarning] = field(default_factory=list)
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return self.status in (CommandStatus.SUCCESS, CommandStatus.NO_OP)

    @property
    def names(self) -> List[str]:
        return [r.name for r in self.executed]

    def to_dict(self) -> dict:
        """Render as a JSON-friendly response dict."""
        response = {
            'success': self.success,
            'status': self.status.value,
            'command': self.command,
            'dry_run': self.dry_run,
            'executed': [r.to_dict() for r in self.executed],
            'warnings': [w.to_dict() for w in self.warnings],
        }
        if self.error is not None:
            response['error'] = self.error.to_dict()
        return response


@dataclass
class MigrationStatusReport:
    """
    Applied and pending migrations at one point in time.

    Attributes:
        applied: Ledger entries, oldest batch first
        pending: Names of known migrations not yet applied
        checksum_mismatches: Applied migrations modified since they ran
        unknown: Applied names with no definition
        latest_batch: Highest batch in the ledger (0 if empty)
    """
    applied: List[LedgerEntry]
    pending: List[str]
    checksum_mismatches: List[str] = field(default_factory=list)
    unknown: List[str] = field(default_factory=list)
    latest_batch: int = 0

    @property
    def is_clean(self) -> bool:
        return not self.checksum_mismatches and not self.unknown

    def to_dict(self) -> dict:
        return {
            'success': True,
            'latest_batch': self.latest_batch,
            'applied': [
                {
                    'name': e.migration_name,
                    'batch': e.batch,
                    'applied_at': e.applied_at.isoformat(),
                    'checksum': e.checksum,
                }
                for e in self.applied
            ],
            'pending': list(self.pending),
            'checksum_mismatches': list(self.checksum_mismatches),
            'unknown': list(self.unknown),
        }


def default_owner() -> str:
    """Lock owner id: host, pid and a random suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"


class MigrationCommands:
    """
    migrate / rollback / reset / fresh / refresh / status.

    Example:
        >>> commands = MigrationCommands(backend, DirectoryMigrationSource(Path('migrations')))
        >>> result = await commands.migrate()
        >>> result.status
        <CommandStatus.SUCCESS: 'success'>
        >>> (await commands.migrate()).status
        <CommandStatus.NO_OP: 'no_op'>
    """

    def __init__(
        self,
        backend,
        source: MigrationSource,
        ledger: Optional[MigrationLedger] = None,
        validator: Optional[MigrationValidator] = None,
        lock_timeout: float = 10.0,
        owner: Optional[str] = None,
    ):
        """
        Initialize command surface.

        Args:
            backend: SchemaBackend to migrate
            source: Provides the known migration definitions
            ledger: Ledger (defaults to one over backend)
            validator: Validator (defaults to one for the backend dialect)
            lock_timeout: Seconds to wait for the migration lock
            owner: Lock owner id (defaults to host:pid:random)
        """
        self.backend = backend
        self.source = source
        self.ledger = ledger or MigrationLedger(backend)
        self.validator = validator or MigrationValidator(getattr(backend, 'dialect', 'sqlite'))
        self.executor = MigrationExecutor(backend, self.ledger)
        self.lock_timeout = lock_timeout
        self.owner = owner or default_owner()

    # ==================== Verbs ====================

    async def migrate(self, dry_run: bool = False) -> CommandResult:
        """Apply every pending migration as one new batch."""
        return await self._run(
            'migrate',
            lambda planner, snapshot: planner.forward_plan(snapshot),
            dry_run,
        )

    async def rollback(
        self,
        batches: int = 1,
        steps: Optional[int] = None,
        dry_run: bool = False,
    ) -> CommandResult:
        """
        Reverse the most recent batch(es).

        Args:
            batches: Number of batches to reverse (default: the latest one)
            steps: Reverse this many individual migrations instead
            dry_run: Report without executing
        """
        return await self._run(
            'rollback',
            lambda planner, snapshot: planner.rollback_plan(snapshot, batches=batches, steps=steps),
            dry_run,
        )

    async def reset(self, dry_run: bool = False) -> CommandResult:
        """Reverse every applied migration."""
        return await self._run(
            'reset',
            lambda planner, snapshot: planner.reset_plan(snapshot),
            dry_run,
        )

    async def fresh(self, dry_run: bool = False) -> CommandResult:
        """Drop everything, then apply every migration as one batch."""
        return await self._run(
            'fresh',
            lambda planner, snapshot: planner.fresh_plan(snapshot),
            dry_run,
        )

    async def refresh(self, dry_run: bool = False) -> CommandResult:
        """Reset, then apply every migration as one batch."""
        return await self._run(
            'refresh',
            lambda planner, snapshot: planner.refresh_plan(snapshot),
            dry_run,
        )

    async def status(self) -> MigrationStatusReport:
        """Report applied, pending, modified and unknown migrations."""
        await self.ledger.ensure_tables()
        snapshot = await self.ledger.snapshot()
        planner = MigrationPlanner(self.source.list_available())

        mismatches = []
        for entry in snapshot.entries:
            definition = planner.find(entry.migration_name)
            if definition is None:
                continue
            for warning in self.validator.verify_checksum(definition, entry.checksum):
                logger.warning('%s', warning)
                mismatches.append(entry.migration_name)

        return MigrationStatusReport(
            applied=list(snapshot.entries),
            pending=[d.name for d in planner.pending(snapshot)],
            checksum_mismatches=mismatches,
            unknown=planner.unknown_applied(snapshot),
            latest_batch=snapshot.latest_batch(),
        )

    # ==================== Pipeline ====================

    async def _run(
        self,
        command: str,
        make_plan: Callable[[MigrationPlanner, LedgerSnapshot], Plan],
        dry_run: bool,
    ) -> CommandResult:
        warnings: List[ValidationWarning] = []

        def result(status: CommandStatus, **kwargs: Any) -> CommandResult:
            return CommandResult(status, command, warnings=warnings, dry_run=dry_run, **kwargs)

        try:
            await self.ledger.ensure_tables()
            async with self.backend.lock(self.owner, self.lock_timeout):
                snapshot = await self.ledger.snapshot()
                plan = make_plan(MigrationPlanner(self.source.list_available()), snapshot)

                if plan.is_empty:
                    logger.info('Nothing to %s', command)
                    return result(CommandStatus.NO_OP)

                warnings.extend(self.validator.validate(plan.forward_definitions()))
                self._log_warnings(warnings)
                errors = [w for w in warnings if w.level == WarningLevel.ERROR]
                if errors:
                    return result(CommandStatus.VALIDATION_FAILED, error=ValidationFailed(errors))

                executed = await self.executor.execute(plan, dry_run=dry_run)

        except LockContention as e:
            logger.warning('%s aborted: %s', command, e.message)
            return result(CommandStatus.LOCK_CONTENTION, error=e)
        except IrreversibleMigration as e:
            return result(CommandStatus.IRREVERSIBLE, executed=e.completed, error=e)
        except UnknownMigration as e:
            return result(CommandStatus.UNKNOWN_MIGRATION, executed=e.completed, error=e)
        except PartialMigrationFailure as e:
            return result(CommandStatus.PARTIAL_FAILURE, executed=e.completed, error=e)
        except LedgerError:
            logger.exception('%s hit a ledger inconsistency', command)
            raise

        logger.info(
            '%s complete: %d migration(s)%s',
            command.capitalize(),
            len(executed),
            ' (DRY RUN)' if dry_run else '',
        )
        return result(CommandStatus.SUCCESS, executed=executed)

    def _log_warnings(self, warnings: List[ValidationWarning]) -> None:
        for warning in warnings:
            if warning.level == WarningLevel.ERROR:
                logger.error('%s', warning)
            elif warning.level == WarningLevel.WARNING:
                logger.warning('%s', warning)
            else:
                logger.info('%s', warning)
