"""
Plan computation for migration commands.

The planner is pure: it takes the known definitions and a ledger snapshot
and returns a Plan. It never touches the database.

Ordering rules:
- Forward steps run in ascending name order (creation order, which is
  the order later migrations depend on).
- Backward steps run most recent batch first and, inside a batch, in the
  reverse of the order the migrations were applied, so nothing is removed
  while something applied after it still depends on it.
"""

import logging
from typing import List, Optional, Sequence

from schemaledger.errors import UnknownMigration
from schemaledger.migrations.ledger import LedgerSnapshot
from schemaledger.migrations.migration import (
    Direction,
    MigrationDefinition,
    Plan,
    PlanStep,
    sort_definitions,
)

logger = logging.getLogger(__name__)


class MigrationPlanner:
    """
    Computes plans from definitions and a ledger snapshot.

    Example:
        >>> planner = MigrationPlanner(source.list_available())
        >>> plan = planner.forward_plan(await ledger.snapshot())
        >>> plan.names
        ['001_create_users', '002_create_posts']
        >>> plan.batch
        1
    """

    def __init__(self, definitions: Sequence[MigrationDefinition]):
        """
        Initialize planner.

        Args:
            definitions: Every known migration definition
        """
        self.definitions = sort_definitions(definitions)
        self._by_name = {d.name: d for d in self.definitions}

    def find(self, name: str) -> Optional[MigrationDefinition]:
        return self._by_name.get(name)

    def pending(self, snapshot: LedgerSnapshot) -> List[MigrationDefinition]:
        """Known definitions not yet applied, ascending by name."""
        applied = snapshot.all_applied()
        return [d for d in self.definitions if d.name not in applied]

    def unknown_applied(self, snapshot: LedgerSnapshot) -> List[str]:
        """Applied names the definitions no longer include."""
        return [
            e.migration_name for e in snapshot.entries
            if e.migration_name not in self._by_name
        ]

    # ==================== Plans ====================

    def forward_plan(self, snapshot: LedgerSnapshot) -> Plan:
        """
        Plan every pending migration as one new batch.

        Returns:
            Plan of kind 'migrate'; empty if nothing is pending
        """
        pending = self.pending(snapshot)
        if not pending:
            return Plan(kind='migrate')
        return Plan(
            kind='migrate',
            steps=self._forward_steps(pending),
            batch=snapshot.next_batch(),
        )

    def rollback_plan(
        self,
        snapshot: LedgerSnapshot,
        batches: int = 1,
        steps: Optional[int] = None,
    ) -> Plan:
        """
        Plan reversal of recent migrations.

        Args:
            snapshot: Ledger snapshot
            batches: Number of most recent batches to reverse
            steps: Number of individual migrations to reverse instead of
                whole batches (crosses batch boundaries as needed)

        Returns:
            Plan of kind 'rollback'; empty if the ledger is empty

        Raises:
            ValueError: If batches or steps is less than 1
            UnknownMigration: If a migration to reverse has no definition
        """
        if steps is not None:
            if steps < 1:
                raise ValueError(f"steps must be >= 1, got {steps}")
            names = self._rollback_order(snapshot)[:steps]
        else:
            if batches < 1:
                raise ValueError(f"batches must be >= 1, got {batches}")
            names = self._rollback_order(snapshot, snapshot.batches_descending()[:batches])

        return Plan(kind='rollback', steps=self._backward_steps(names))

    def reset_plan(self, snapshot: LedgerSnapshot) -> Plan:
        """Plan reversal of every applied migration."""
        return Plan(kind='reset', steps=self._backward_steps(self._rollback_order(snapshot)))

    def fresh_plan(self, snapshot: LedgerSnapshot) -> Plan:
        """
        Plan a wipe followed by every known migration as one batch.

        Backward sequences are never consulted, so irreversible and unknown
        applied migrations do not block it.
        """
        return Plan(
            kind='fresh',
            steps=self._forward_steps(self.definitions),
            batch=snapshot.next_batch(),
            wipe=True,
        )

    def refresh_plan(self, snapshot: LedgerSnapshot) -> Plan:
        """Plan a full reset followed by every known migration as one batch."""
        backward = self._backward_steps(self._rollback_order(snapshot))
        forward = self._forward_steps(self.definitions)
        return Plan(
            kind='refresh',
            steps=backward + forward,
            batch=snapshot.next_batch() if forward else None,
        )

    # ==================== Helpers ====================

    def _rollback_order(
        self,
        snapshot: LedgerSnapshot,
        batches: Optional[Sequence[int]] = None,
    ) -> List[str]:
        if batches is None:
            batches = snapshot.batches_descending()
        names = []
        for batch in batches:
            names.extend(reversed(snapshot.entries_in_batch(batch)))
        return names

    def _forward_steps(self, definitions: Sequence[MigrationDefinition]) -> tuple:
        return tuple(PlanStep(d, Direction.FORWARD) for d in definitions)

    def _backward_steps(self, names: Sequence[str]) -> tuple:
        steps = []
        for name in names:
            definition = self._by_name.get(name)
            if definition is None:
                logger.error('Applied migration %s has no definition', name)
                raise UnknownMigration(name)
            steps.append(PlanStep(definition, Direction.BACKWARD))
        return tuple(steps)
