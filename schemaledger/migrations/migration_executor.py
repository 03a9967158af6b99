#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Migration executor for plan execution.

Applies the operations of each plan step through a schema backend and
records the outcome in the ledger. Steps run strictly in plan order; the
first failure halts the plan.

Atomicity:
- Transactional backends: one transaction per migration, covering its
  operations and its ledger write. A failure rolls the whole migration back.
- Other backends: each operation commits on its own. A failure stops the
  migration where it is and leaves the ledger untouched for it; nothing
  is compensated.

Cancellation only takes effect between migrations: a migration that has
started runs to completion or failure before the cancellation propagates.
"""
import asyncio
import logging
import time
from typing import List, Optional

from schemaledger.errors import (
    IrreversibleMigration,
    MigrationError,
    PartialMigrationFailure,
    SchemaLedgerError,
)
from schemaledger.migrations.ledger import MigrationLedger
from schemaledger.migrations.migration import Direction, Plan, PlanStep, StepResult


class MigrationExecutor:
    """
    Executes migration plans against a schema backend.

    Attributes:
        backend: SchemaBackend the operations are applied through
        ledger: MigrationLedger recording applied migrations
        logger: Logger for migration events

    Example:
        >>> executor = MigrationExecutor(backend, ledger)
        >>> results = await executor.execute(plan)
        >>> [r.name for r in results]
        ['001_create_users', '002_create_posts']
    """

    def __init__(self, backend, ledger: MigrationLedger):
        """
        Initialize migration executor.

        Args:
            backend: SchemaBackend instance
            ledger: MigrationLedger instance
        """
        self.backend = backend
        self.ledger = ledger
        self.logger = logging.getLogger(__name__)

    async def execute(self, plan: Plan, dry_run: bool = False) -> List[StepResult]:
        """
        Execute every step of a plan in order.

        Args:
            plan: Plan to execute
            dry_run: If True, log what would run and touch nothing

        Returns:
            StepResult per executed step

        Raises:
            IrreversibleMigration: Backward step without backward operations
            PartialMigrationFailure: An operation failed
            asyncio.CancelledError: Cancelled; raised after the migration in
                flight finished

        Each MigrationError raised carries the StepResults of the steps
        completed before it in ``completed``.
        """
        completed: List[StepResult] = []

        try:
            if plan.wipe:
                await self._wipe(dry_run)

            for step in plan.steps:
                task = asyncio.ensure_future(self._run_step(step, plan.batch, dry_run))
                cancel_requested = False
                while True:
                    try:
                        result = await asyncio.shield(task)
                        break
                    except asyncio.CancelledError:
                        if task.cancelled():
                            raise
                        if not cancel_requested:
                            self.logger.warning(
                                'Cancellation requested; finishing migration %s first',
                                step.name,
                            )
                        cancel_requested = True
                completed.append(result)
                if cancel_requested:
                    raise asyncio.CancelledError()

        except MigrationError as e:
            e.completed = list(completed)
            raise

        return completed

    async def _run_step(
        self,
        step: PlanStep,
        batch: Optional[int],
        dry_run: bool,
    ) -> StepResult:
        operations = step.definition.operations(step.direction)

        if step.direction == Direction.BACKWARD and not operations:
            self.logger.error('Cannot reverse irreversible migration %s', step.name)
            raise IrreversibleMigration(step.name)

        start_time = time.time()
        recorded_batch = batch if step.direction == Direction.FORWARD else None

        if dry_run:
            self.logger.info(
                'Would %s migration %s (%d operations) (DRY RUN)',
                'apply' if step.direction == Direction.FORWARD else 'revert',
                step.name,
                len(operations),
            )
            for op in operations:
                self.logger.info('  %s', op.describe())
            return StepResult(
                name=step.name,
                direction=step.direction,
                operations=len(operations),
                execution_time_ms=0,
                batch=recorded_batch,
                dry_run=True,
            )

        self.logger.info(
            '%s migration %s',
            'Applying' if step.direction == Direction.FORWARD else 'Reverting',
            step.name,
        )

        if self.backend.supports_transactional_ddl:
            await self._run_in_transaction(step, operations, batch)
        else:
            await self._run_sequentially(step, operations, batch)

        execution_time_ms = int((time.time() - start_time) * 1000)
        self.logger.info(
            '%s migration %s (%dms)',
            'Applied' if step.direction == Direction.FORWARD else 'Reverted',
            step.name,
            execution_time_ms,
        )

        return StepResult(
            name=step.name,
            direction=step.direction,
            operations=len(operations),
            execution_time_ms=execution_time_ms,
            batch=recorded_batch,
        )

    async def _run_in_transaction(self, step: PlanStep, operations, batch) -> None:
        done: List[str] = []
        current = 'begin transaction'
        try:
            async with self.backend.transaction() as conn:
                for op in operations:
                    current = op.describe()
                    await self.backend.apply(op, conn)
                    done.append(current)
                current = 'ledger update'
                await self._record(step, batch, conn)
                current = 'commit'
        except SchemaLedgerError:
            raise
        except Exception as e:
            self.logger.error(
                'Migration %s failed at %s: %s (rolled back)', step.name, current, e
            )
            raise PartialMigrationFailure(
                step.name,
                step.direction.value,
                done,
                current,
                e,
                rolled_back=True,
            ) from e

    async def _run_sequentially(self, step: PlanStep, operations, batch) -> None:
        done: List[str] = []
        for op in operations:
            try:
                async with self.backend.transaction() as conn:
                    await self.backend.apply(op, conn)
            except Exception as e:
                self.logger.error(
                    'Migration %s failed at %s: %s (%d operation(s) left applied)',
                    step.name,
                    op.describe(),
                    e,
                    len(done),
                )
                raise PartialMigrationFailure(
                    step.name,
                    step.direction.value,
                    done,
                    op.describe(),
                    e,
                    rolled_back=False,
                ) from e
            done.append(op.describe())

        try:
            await self._record(step, batch, None)
        except SchemaLedgerError:
            raise
        except Exception as e:
            self.logger.error(
                'Migration %s applied but ledger update failed: %s', step.name, e
            )
            raise PartialMigrationFailure(
                step.name,
                step.direction.value,
                done,
                'ledger update',
                e,
                rolled_back=False,
            ) from e

    async def _record(self, step: PlanStep, batch: Optional[int], conn) -> None:
        if step.direction == Direction.FORWARD:
            await self.ledger.record_applied(
                step.name,
                batch,
                checksum=step.definition.checksum,
                conn=conn,
            )
        else:
            await self.ledger.record_reverted(step.name, conn=conn)

    async def _wipe(self, dry_run: bool) -> None:
        """Drop every structural object and clear the ledger."""
        if dry_run:
            self.logger.info('Would drop all tables and clear the ledger (DRY RUN)')
            return

        self.logger.warning('Dropping all tables for a fresh migration run')
        try:
            async with self.backend.transaction() as conn:
                await self.backend.drop_all(conn, exclude=self.backend.tables.names)
                await self.ledger.clear(conn)
        except SchemaLedgerError:
            raise
        except Exception as e:
            self.logger.error('Dropping existing objects failed: %s', e)
            raise PartialMigrationFailure(
                'fresh',
                Direction.BACKWARD.value,
                [],
                'drop all objects',
                e,
                rolled_back=self.backend.supports_transactional_ddl,
            ) from e
