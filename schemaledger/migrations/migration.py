"""
Migration data models for schema evolution.

This module defines the core data structures of the engine:
- MigrationDefinition: A named pair of forward/backward operation sequences
- LedgerEntry: A migration recorded as applied in the ledger
- Plan / PlanStep: What a command is about to execute, in order
- StepResult: Outcome of one executed plan step

These models are shared by the planner, the executor and the command layer.
"""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Sequence, Tuple

from schemaledger.errors import MigrationDefinitionError
from schemaledger.migrations.operations import Operation, operation_from_dict


class Direction(str, Enum):
    """Direction a migration is executed in."""
    FORWARD = "forward"
    BACKWARD = "backward"


def _coerce_operations(operations: Any, name: str, label: str) -> Tuple[Operation, ...]:
    result = []
    for index, op in enumerate(operations or ()):
        if isinstance(op, Operation):
            result.append(op)
        elif isinstance(op, dict):
            try:
                result.append(operation_from_dict(op))
            except MigrationDefinitionError as e:
                raise MigrationDefinitionError(
                    f"Migration {name}: {label}[{index}]: {e.message}"
                ) from e
        else:
            raise MigrationDefinitionError(
                f"Migration {name}: {label}[{index}] is not an operation"
            )
    return tuple(result)


def compute_checksum(content: str) -> str:
    """
    Compute SHA-256 checksum of migration content.

    Used to detect a migration being modified after it was applied.

    Returns:
        Hexadecimal SHA-256 hash (64 characters)
    """
    return hashlib.sha256(content.encode('utf-8')).hexdigest()


@dataclass(frozen=True)
class MigrationDefinition:
    """
    A single named, ordered unit of structural change.

    Definitions are immutable and ordered by name only. Names are expected
    to start with a creation-time token so that lexicographic order matches
    creation order (and therefore dependency order).

    Attributes:
        name: Unique identity (e.g. '2024_01_15_093000_create_users')
        forward: Operations applied by migrate (must not be empty)
        backward: Operations applied by rollback (empty only if irreversible)
        irreversible: Explicit marker allowing an empty backward sequence
        description: Optional free text
        checksum: SHA-256 of the content (computed when not supplied)
        source_path: File the definition was loaded from, if any

    Example:
        >>> migration = MigrationDefinition(
        ...     name='001_create_users',
        ...     forward=[CreateTable('users', [ColumnSpec('id', 'integer', primary_key=True)])],
        ...     backward=[DropTable('users')],
        ... )
        >>> print(migration)
        <Migration(001_create_users)>
    """

    name: str
    forward: Tuple[Operation, ...]
    backward: Tuple[Operation, ...] = ()
    irreversible: bool = False
    description: Optional[str] = None
    checksum: Optional[str] = field(default=None, compare=False)
    source_path: Optional[str] = field(default=None, compare=False)

    def __post_init__(self):
        """Validate definition after initialization."""
        if not self.name or not str(self.name).strip() or self.name != self.name.strip():
            raise MigrationDefinitionError(
                f"Migration name must be a non-empty token, got {self.name!r}"
            )

        forward = _coerce_operations(self.forward, self.name, 'forward')
        backward = _coerce_operations(self.backward, self.name, 'backward')

        if not forward:
            raise MigrationDefinitionError(
                f"Migration {self.name} has empty forward sequence"
            )

        if not backward and not self.irreversible:
            raise MigrationDefinitionError(
                f"Migration {self.name} has empty backward sequence; "
                f"mark it irreversible to allow this"
            )

        object.__setattr__(self, 'forward', forward)
        object.__setattr__(self, 'backward', backward)

        if self.checksum is None:
            object.__setattr__(self, 'checksum', compute_checksum(self.canonical_json()))

    @property
    def is_reversible(self) -> bool:
        return bool(self.backward)

    def operations(self, direction: Direction) -> Tuple[Operation, ...]:
        return self.forward if direction == Direction.FORWARD else self.backward

    def canonical_json(self) -> str:
        """Stable JSON rendering of the definition content."""
        return json.dumps(
            {
                'forward': [op.to_dict() for op in self.forward],
                'backward': [op.to_dict() for op in self.backward],
                'irreversible': self.irreversible,
            },
            sort_keys=True,
            separators=(',', ':'),
        )

    def __lt__(self, other: 'MigrationDefinition') -> bool:
        """Allow sorting definitions by name."""
        if not isinstance(other, MigrationDefinition):
            return NotImplemented
        return self.name < other.name

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Migration({self.name})>"


@dataclass(frozen=True)
class LedgerEntry:
    """
    A migration recorded as applied.

    This corresponds to a row in the schema_migrations table.

    Attributes:
        id: Autoincrement id; insertion order within a batch
        migration_name: Name of the applied migration
        batch: Batch number shared by migrations applied together
        applied_at: When the migration was applied (UTC)
        checksum: Content checksum at time of application
    """

    id: int
    migration_name: str
    batch: int
    applied_at: datetime
    checksum: Optional[str] = None

    def __post_init__(self):
        if self.batch < 1:
            raise ValueError(f"Batch number must be >= 1, got {self.batch}")

    def __repr__(self) -> str:
        return f"<LedgerEntry({self.migration_name}, batch {self.batch})>"


@dataclass(frozen=True)
class PlanStep:
    """One migration to execute in a given direction."""
    definition: MigrationDefinition
    direction: Direction

    @property
    def name(self) -> str:
        return self.definition.name


@dataclass(frozen=True)
class Plan:
    """
    Ordered steps a command will execute.

    Computed on demand from a ledger snapshot; never persisted.

    Attributes:
        kind: Command the plan was built for ('migrate', 'rollback', ...)
        steps: Steps in execution order
        batch: Batch number forward steps are recorded under
        wipe: Drop every structural object before running steps (fresh)
    """
    kind: str
    steps: Tuple[PlanStep, ...] = ()
    batch: Optional[int] = None
    wipe: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.steps and not self.wipe

    @property
    def names(self) -> list[str]:
        return [step.name for step in self.steps]

    def forward_definitions(self) -> list[MigrationDefinition]:
        return [s.definition for s in self.steps if s.direction == Direction.FORWARD]

    def __len__(self) -> int:
        return len(self.steps)


@dataclass
class StepResult:
    """
    Result of executing one plan step.

    Attributes:
        name: Migration name
        direction: Direction executed
        operations: Number of operations executed
        execution_time_ms: Execution time in milliseconds
        batch: Batch recorded (forward steps only)
        dry_run: True if nothing was actually executed
    """
    name: str
    direction: Direction
    operations: int
    execution_time_ms: int
    batch: Optional[int] = None
    dry_run: bool = False

    def to_dict(self) -> dict:
        return {
            'name': self.name,
            'direction': self.direction.value,
            'operations': self.operations,
            'execution_time_ms': self.execution_time_ms,
            'batch': self.batch,
            'dry_run': self.dry_run,
        }


def sort_definitions(definitions: Sequence[MigrationDefinition]) -> list[MigrationDefinition]:
    """Return definitions in ascending identity order."""
    return sorted(definitions)
