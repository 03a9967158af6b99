"""
Structural operations for schema migrations.

Operations are plain data: frozen dataclasses tagged by ``kind``. They carry
every structural parameter a backend needs to apply them, and nothing else,
so they can be logged, diffed, serialized to YAML/JSON and replayed.

Each variant has a natural inverse, listed in its docstring. The engine
never derives inverses on its own; every migration spells out its backward
sequence, because inversion can lose data (a dropped column cannot be
restored by adding it back).

Example:
    >>> op = AddColumn('users', ColumnSpec('age', 'integer'))
    >>> op.to_dict()
    {'op': 'add_column', 'table': 'users', 'column': {'name': 'age', 'type': 'integer', ...}}
    >>> operation_from_dict(op.to_dict()) == op
    True
"""

from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Tuple, Type

from schemaledger.errors import MigrationDefinitionError


class ReferentialAction(str, Enum):
    """Foreign key ON DELETE / ON UPDATE policies, forwarded verbatim to DDL."""
    CASCADE = "CASCADE"
    RESTRICT = "RESTRICT"
    SET_NULL = "SET NULL"
    NO_ACTION = "NO ACTION"

    @classmethod
    def parse(cls, value: Any) -> Optional['ReferentialAction']:
        """
        Parse a policy from user input.

        Accepts enum members and the spellings 'cascade', 'set-null',
        'set_null', 'SET NULL', 'no action' and so on.
        """
        if value is None or isinstance(value, cls):
            return value
        normalized = str(value).strip().upper().replace('-', ' ').replace('_', ' ')
        for action in cls:
            if action.value == normalized:
                return action
        raise MigrationDefinitionError(
            f"Unknown referential action '{value}' "
            f"(expected one of: {', '.join(a.value for a in cls)})"
        )


COLUMN_TYPES = frozenset({
    'integer', 'biginteger', 'smallinteger',
    'string', 'text', 'boolean',
    'float', 'numeric',
    'date', 'datetime', 'time',
    'json', 'binary',
})


def _require(value: Any, what: str) -> None:
    if not value:
        raise MigrationDefinitionError(f"{what} must not be empty")


def _as_tuple(values: Any, what: str) -> Tuple[str, ...]:
    if isinstance(values, str):
        values = (values,)
    result = tuple(values or ())
    _require(result, what)
    return result


# ============================================================================
# Structural specs
# ============================================================================

@dataclass(frozen=True)
class ColumnSpec:
    """
    Column definition used by CreateTable and AddColumn.

    Attributes:
        name: Column name
        type: Abstract type name (see COLUMN_TYPES)
        length: Length for string/binary columns
        precision: Precision for numeric columns
        scale: Scale for numeric columns
        nullable: Whether NULL is allowed
        primary_key: Part of the primary key
        autoincrement: Autoincrementing integer key
        unique: Single-column unique constraint
        server_default: Literal SQL default (e.g. "0", "CURRENT_TIMESTAMP")
    """
    name: str
    type: str
    length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    nullable: bool = True
    primary_key: bool = False
    autoincrement: bool = False
    unique: bool = False
    server_default: Optional[str] = None

    def __post_init__(self):
        _require(self.name, "Column name")
        normalized = str(self.type).lower()
        if normalized not in COLUMN_TYPES:
            raise MigrationDefinitionError(
                f"Unknown column type '{self.type}' for column '{self.name}'"
            )
        object.__setattr__(self, 'type', normalized)

    @classmethod
    def coerce(cls, value: Any) -> 'ColumnSpec':
        if isinstance(value, cls):
            return value
        return _build(cls, value, 'column')


@dataclass(frozen=True)
class ForeignKeySpec:
    """Inline foreign key declared as part of CreateTable."""
    columns: Tuple[str, ...]
    referenced_table: str
    referenced_columns: Tuple[str, ...]
    name: Optional[str] = None
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None

    def __post_init__(self):
        object.__setattr__(self, 'columns', _as_tuple(self.columns, "Foreign key columns"))
        object.__setattr__(
            self, 'referenced_columns',
            _as_tuple(self.referenced_columns, "Referenced columns"),
        )
        _require(self.referenced_table, "Referenced table")
        object.__setattr__(self, 'on_delete', ReferentialAction.parse(self.on_delete))
        object.__setattr__(self, 'on_update', ReferentialAction.parse(self.on_update))

    @classmethod
    def coerce(cls, value: Any) -> 'ForeignKeySpec':
        if isinstance(value, cls):
            return value
        return _build(cls, value, 'foreign key')


@dataclass(frozen=True)
class IndexSpec:
    """Inline index declared as part of CreateTable."""
    name: str
    columns: Tuple[str, ...]
    unique: bool = False

    def __post_init__(self):
        _require(self.name, "Index name")
        object.__setattr__(self, 'columns', tuple(
            (self.columns,) if isinstance(self.columns, str) else self.columns or ()
        ))

    @classmethod
    def coerce(cls, value: Any) -> 'IndexSpec':
        if isinstance(value, cls):
            return value
        return _build(cls, value, 'index')


# ============================================================================
# Operation variants
# ============================================================================

_OPERATION_TYPES: Dict[str, Type['Operation']] = {}


def _register(cls):
    _OPERATION_TYPES[cls.kind] = cls
    return cls


class Operation:
    """Base class for all structural operations."""

    kind: ClassVar[str] = ''

    def describe(self) -> str:
        """Short human-readable description for logs and failure reports."""
        return f"{self.kind} {getattr(self, 'table', '')}".strip()

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a plain dict with an 'op' tag."""
        data = {'op': self.kind}
        data.update(_plain(self))
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Operation':
        return _build(cls, data, cls.kind)


@_register
@dataclass(frozen=True)
class CreateTable(Operation):
    """Create a table. Inverse: DropTable (lossy in the other direction)."""
    kind: ClassVar[str] = 'create_table'
    table: str
    columns: Tuple[ColumnSpec, ...]
    foreign_keys: Tuple[ForeignKeySpec, ...] = field(default_factory=tuple)
    indexes: Tuple[IndexSpec, ...] = field(default_factory=tuple)

    def __post_init__(self):
        _require(self.table, "Table name")
        columns = tuple(ColumnSpec.coerce(c) for c in self.columns or ())
        _require(columns, f"Columns of table '{self.table}'")
        object.__setattr__(self, 'columns', columns)
        object.__setattr__(self, 'foreign_keys', tuple(
            ForeignKeySpec.coerce(fk) for fk in self.foreign_keys or ()
        ))
        object.__setattr__(self, 'indexes', tuple(
            IndexSpec.coerce(ix) for ix in self.indexes or ()
        ))


@_register
@dataclass(frozen=True)
class DropTable(Operation):
    """Drop a table and its data. Inverse: CreateTable."""
    kind: ClassVar[str] = 'drop_table'
    table: str

    def __post_init__(self):
        _require(self.table, "Table name")


@_register
@dataclass(frozen=True)
class RenameTable(Operation):
    """Rename a table. Inverse: RenameTable with names swapped."""
    kind: ClassVar[str] = 'rename_table'
    table: str
    new_name: str

    def __post_init__(self):
        _require(self.table, "Table name")
        _require(self.new_name, "New table name")

    def describe(self) -> str:
        return f"rename_table {self.table} -> {self.new_name}"


@_register
@dataclass(frozen=True)
class AddColumn(Operation):
    """Add a column. Inverse: DropColumn of the same name."""
    kind: ClassVar[str] = 'add_column'
    table: str
    column: ColumnSpec

    def __post_init__(self):
        _require(self.table, "Table name")
        object.__setattr__(self, 'column', ColumnSpec.coerce(self.column))

    def describe(self) -> str:
        return f"add_column {self.table}.{self.column.name}"


@_register
@dataclass(frozen=True)
class DropColumn(Operation):
    """Drop a column and its data. Inverse: AddColumn (values are lost)."""
    kind: ClassVar[str] = 'drop_column'
    table: str
    column: str

    def __post_init__(self):
        _require(self.table, "Table name")
        _require(self.column, "Column name")

    def describe(self) -> str:
        return f"drop_column {self.table}.{self.column}"


@_register
@dataclass(frozen=True)
class RenameColumn(Operation):
    """Rename a column. Inverse: RenameColumn with names swapped."""
    kind: ClassVar[str] = 'rename_column'
    table: str
    column: str
    new_name: str

    def __post_init__(self):
        _require(self.table, "Table name")
        _require(self.column, "Column name")
        _require(self.new_name, "New column name")

    def describe(self) -> str:
        return f"rename_column {self.table}.{self.column} -> {self.new_name}"


@_register
@dataclass(frozen=True)
class AddForeignKey(Operation):
    """
    Add a named foreign key constraint. Inverse: DropForeignKey.

    on_delete / on_update are passed to the backend as-is.
    """
    kind: ClassVar[str] = 'add_foreign_key'
    name: str
    table: str
    columns: Tuple[str, ...]
    referenced_table: str
    referenced_columns: Tuple[str, ...]
    on_delete: Optional[ReferentialAction] = None
    on_update: Optional[ReferentialAction] = None

    def __post_init__(self):
        _require(self.name, "Foreign key name")
        _require(self.table, "Table name")
        _require(self.referenced_table, "Referenced table")
        object.__setattr__(self, 'columns', _as_tuple(self.columns, "Foreign key columns"))
        object.__setattr__(
            self, 'referenced_columns',
            _as_tuple(self.referenced_columns, "Referenced columns"),
        )
        object.__setattr__(self, 'on_delete', ReferentialAction.parse(self.on_delete))
        object.__setattr__(self, 'on_update', ReferentialAction.parse(self.on_update))

    def describe(self) -> str:
        return (
            f"add_foreign_key {self.name} on {self.table}({', '.join(self.columns)}) "
            f"-> {self.referenced_table}({', '.join(self.referenced_columns)})"
        )


@_register
@dataclass(frozen=True)
class DropForeignKey(Operation):
    """Drop a named foreign key constraint. Inverse: AddForeignKey."""
    kind: ClassVar[str] = 'drop_foreign_key'
    name: str
    table: str

    def __post_init__(self):
        _require(self.name, "Foreign key name")
        _require(self.table, "Table name")

    def describe(self) -> str:
        return f"drop_foreign_key {self.name} on {self.table}"


@_register
@dataclass(frozen=True)
class AddIndex(Operation):
    """Create an index. Inverse: DropIndex."""
    kind: ClassVar[str] = 'add_index'
    name: str
    table: str
    columns: Tuple[str, ...]
    unique: bool = False

    def __post_init__(self):
        _require(self.name, "Index name")
        _require(self.table, "Table name")
        object.__setattr__(self, 'columns', tuple(
            (self.columns,) if isinstance(self.columns, str) else self.columns or ()
        ))

    def describe(self) -> str:
        return f"add_index {self.name} on {self.table}({', '.join(self.columns)})"


@_register
@dataclass(frozen=True)
class DropIndex(Operation):
    """Drop an index. Inverse: AddIndex."""
    kind: ClassVar[str] = 'drop_index'
    name: str
    table: str

    def __post_init__(self):
        _require(self.name, "Index name")
        _require(self.table, "Table name")

    def describe(self) -> str:
        return f"drop_index {self.name} on {self.table}"


@_register
@dataclass(frozen=True)
class ExecuteSQL(Operation):
    """
    Run raw SQL text (one or more statements).

    The SQL is data like any other parameter; its inverse is whatever the
    author writes in the backward sequence.
    """
    kind: ClassVar[str] = 'execute_sql'
    sql: str

    def __post_init__(self):
        _require(self.sql and self.sql.strip(), "SQL text")

    def describe(self) -> str:
        first_line = self.sql.strip().splitlines()[0]
        if len(first_line) > 60:
            first_line = first_line[:57] + '...'
        return f"execute_sql {first_line}"


# ============================================================================
# Serialization helpers
# ============================================================================

def _plain(value: Any) -> Any:
    """Convert operations/specs to JSON-friendly values, dropping None fields."""
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        result = {}
        for f in fields(value):
            item = getattr(value, f.name)
            if item is None or item == ():
                continue
            result[f.name] = _plain(item)
        return result
    if isinstance(value, (tuple, list)):
        return [_plain(v) for v in value]
    return value


def _build(cls, data: Any, what: str):
    if not isinstance(data, dict):
        raise MigrationDefinitionError(
            f"Expected a mapping for {what}, got {type(data).__name__}"
        )
    allowed = {f.name for f in fields(cls)}
    params = {k: v for k, v in data.items() if k != 'op'}
    unknown = set(params) - allowed
    if unknown:
        raise MigrationDefinitionError(
            f"Unknown parameter(s) for {what}: {', '.join(sorted(unknown))}"
        )
    try:
        return cls(**params)
    except TypeError as e:
        raise MigrationDefinitionError(f"Invalid parameters for {what}: {e}") from e


def operation_from_dict(data: Dict[str, Any]) -> Operation:
    """
    Build an operation from its dict form.

    Args:
        data: Mapping with an 'op' key naming the kind plus its parameters

    Returns:
        Operation instance

    Raises:
        MigrationDefinitionError: If the kind is unknown or parameters
            are missing/invalid

    Example:
        >>> operation_from_dict({'op': 'drop_table', 'table': 'users'})
        DropTable(table='users')
    """
    if not isinstance(data, dict):
        raise MigrationDefinitionError(
            f"Operation must be a mapping, got {type(data).__name__}"
        )
    kind = data.get('op')
    op_class = _OPERATION_TYPES.get(kind)
    if op_class is None:
        raise MigrationDefinitionError(
            f"Unknown operation '{kind}' "
            f"(expected one of: {', '.join(sorted(_OPERATION_TYPES))})"
        )
    return op_class.from_dict(data)


def operation_kinds() -> Tuple[str, ...]:
    """All registered operation kinds, sorted."""
    return tuple(sorted(_OPERATION_TYPES))
