"""
Migration sources: discovery and loading of migration definitions.

A migration source is the collaborator that tells the engine which
migrations exist. Two sources are provided:
- InMemoryMigrationSource: definitions assembled in code
- DirectoryMigrationSource: YAML/JSON files in a migrations directory

Migration files follow the naming convention: <token>_<description>.yaml
where <token> is a creation-time token made of digit groups.
Examples: 2024_01_15_093000_create_users.yaml, 001_create_users.json

File format:
    description: Create the users table
    forward:
      - op: create_table
        table: users
        columns:
          - {name: id, type: integer, primary_key: true, autoincrement: true}
          - {name: email, type: string, length: 255, nullable: false}
    backward:
      - op: drop_table
        table: users
"""

import json
import logging
import re
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

import yaml

from schemaledger.errors import DuplicateMigrationName, MigrationDefinitionError
from schemaledger.migrations.migration import MigrationDefinition, compute_checksum

logger = logging.getLogger(__name__)


# Migration filename pattern: <digits[_digits...]>_<description>.<yaml|yml|json>
MIGRATION_PATTERN = re.compile(r'^(\d+(?:_\d+)*)_([a-z0-9_]+)\.(ya?ml|json)$')

# Keys allowed at the top level of a migration file
FILE_KEYS = frozenset({'description', 'irreversible', 'forward', 'backward'})


class MigrationSource(ABC):
    """
    Provides the set of known migration definitions.

    Implementations must return definitions in ascending name order and
    raise DuplicateMigrationName if two definitions share a name.
    """

    @abstractmethod
    def list_available(self) -> List[MigrationDefinition]:
        """Return all known definitions, sorted by name ascending."""

    def find(self, name: str) -> Optional[MigrationDefinition]:
        """Find a definition by name, or None."""
        for definition in self.list_available():
            if definition.name == name:
                return definition
        return None


def _check_unique(definitions: Iterable[MigrationDefinition]) -> List[MigrationDefinition]:
    seen = set()
    result = []
    for definition in definitions:
        if definition.name in seen:
            raise DuplicateMigrationName(definition.name)
        seen.add(definition.name)
        result.append(definition)
    return sorted(result)


class InMemoryMigrationSource(MigrationSource):
    """
    Source over definitions built in code.

    Example:
        >>> source = InMemoryMigrationSource([create_users, create_posts])
        >>> source.list_available()
        [<Migration(001_create_users)>, <Migration(002_create_posts)>]
    """

    def __init__(self, definitions: Iterable[MigrationDefinition] = ()):
        self._definitions = _check_unique(definitions)

    def add(self, definition: MigrationDefinition) -> None:
        """Register another definition (DuplicateMigrationName on clash)."""
        self._definitions = _check_unique([*self._definitions, definition])

    def list_available(self) -> List[MigrationDefinition]:
        return list(self._definitions)


class DirectoryMigrationSource(MigrationSource):
    """
    Discovers migration files in a directory.

    Responsibilities:
    - Discover migration files matching the naming convention
    - Parse YAML/JSON content into operations
    - Compute checksums for tamper detection

    Does NOT execute migrations (see MigrationExecutor).

    Example:
        >>> source = DirectoryMigrationSource(Path('migrations'))
        >>> source.list_available()
        [<Migration(2024_01_15_093000_create_users)>, ...]
    """

    def __init__(self, migrations_dir: Path):
        """
        Initialize migration source.

        Args:
            migrations_dir: Directory containing migration files
        """
        self.migrations_dir = Path(migrations_dir)

    def list_available(self) -> List[MigrationDefinition]:
        """
        Discover all migration files.

        Scans the migrations directory for files matching the naming
        convention, parses them, and returns them sorted by name.

        Returns:
            List of MigrationDefinition objects sorted by name ascending

        Raises:
            DuplicateMigrationName: If two files share a name (e.g. a .yaml
                and a .json file with the same stem)
            MigrationDefinitionError: If a file cannot be parsed
        """
        if not self.migrations_dir.exists():
            logger.warning("Migrations directory not found: %s", self.migrations_dir)
            return []

        definitions = []
        for file_path in sorted(self.migrations_dir.iterdir()):
            if not file_path.is_file():
                continue
            if not MIGRATION_PATTERN.match(file_path.name):
                if file_path.suffix in ('.yaml', '.yml', '.json'):
                    logger.warning(
                        "Skipping invalid migration filename: %s", file_path.name
                    )
                continue

            definition = self.parse_migration_file(file_path)
            logger.debug("Discovered migration: %s", definition)
            definitions.append(definition)

        return _check_unique(definitions)

    def parse_migration_file(self, file_path: Path) -> MigrationDefinition:
        """
        Parse a migration file into a definition.

        Args:
            file_path: Path to migration file

        Returns:
            MigrationDefinition named after the file stem

        Raises:
            FileNotFoundError: If file doesn't exist
            MigrationDefinitionError: If the name or content is invalid
        """
        if not file_path.exists():
            raise FileNotFoundError(f"Migration file not found: {file_path}")

        match = MIGRATION_PATTERN.match(file_path.name)
        if not match:
            raise MigrationDefinitionError(
                f"Invalid migration filename: {file_path.name}"
            )

        content = file_path.read_text(encoding='utf-8')
        data = self._load_content(content, file_path)

        unknown = set(data) - FILE_KEYS
        if unknown:
            raise MigrationDefinitionError(
                f"Migration {file_path.name} has unknown key(s): "
                f"{', '.join(sorted(unknown))}"
            )

        return MigrationDefinition(
            name=file_path.name.rsplit('.', 1)[0],
            forward=data.get('forward') or (),
            backward=data.get('backward') or (),
            irreversible=bool(data.get('irreversible', False)),
            description=data.get('description'),
            checksum=compute_checksum(content),
            source_path=str(file_path.absolute()),
        )

    def _load_content(self, content: str, file_path: Path) -> dict:
        try:
            if file_path.suffix == '.json':
                data = json.loads(content)
            else:
                data = yaml.safe_load(content)
        except (json.JSONDecodeError, yaml.YAMLError) as e:
            raise MigrationDefinitionError(
                f"Migration {file_path.name} could not be parsed: {e}"
            ) from e

        if not isinstance(data, dict):
            raise MigrationDefinitionError(
                f"Migration {file_path.name} must contain a mapping"
            )
        return data


# ============================================================================
# Templates
# ============================================================================

_CREATE_TABLE_NAME = re.compile(r'^create_([a-z0-9_]+?)(?:_table)?$')
_ALTER_TABLE_NAME = re.compile(r'^[a-z0-9]+_[a-z0-9_]+_(?:to|from|in|on)_([a-z0-9_]+?)(?:_table)?$')


def normalize_migration_name(name: str) -> str:
    """Lowercase a description and replace separators with underscores."""
    normalized = re.sub(r'[\s\-]+', '_', name.strip().lower())
    if not re.fullmatch(r'[a-z0-9_]+', normalized):
        raise MigrationDefinitionError(
            f"Migration description may only contain letters, digits and "
            f"underscores: {name!r}"
        )
    return normalized


def _template_operations(description: str) -> dict:
    create = _CREATE_TABLE_NAME.match(description)
    if create:
        table = create.group(1)
        return {
            'forward': [{
                'op': 'create_table',
                'table': table,
                'columns': [
                    {'name': 'id', 'type': 'integer', 'primary_key': True,
                     'autoincrement': True},
                ],
            }],
            'backward': [{'op': 'drop_table', 'table': table}],
        }

    alter = _ALTER_TABLE_NAME.match(description)
    if alter:
        table = alter.group(1)
        return {
            'forward': [{
                'op': 'add_column',
                'table': table,
                'column': {'name': 'new_column', 'type': 'string', 'length': 255},
            }],
            'backward': [{'op': 'drop_column', 'table': table, 'column': 'new_column'}],
        }

    return {
        'forward': [{'op': 'execute_sql', 'sql': 'SELECT 1'}],
        'backward': [{'op': 'execute_sql', 'sql': 'SELECT 1'}],
    }


def write_migration_template(
    migrations_dir: Path,
    name: str,
    now: Optional[datetime] = None,
) -> Path:
    """
    Create a new migration file with a creation-time token.

    The table name is guessed from the description: 'create_users' produces
    a create_table skeleton, 'add_age_to_users' an add_column skeleton,
    anything else a placeholder execute_sql pair.

    Args:
        migrations_dir: Directory to write into (created if missing)
        name: Description, e.g. 'create_users'
        now: Timestamp for the token (defaults to current UTC time)

    Returns:
        Path of the created file

    Raises:
        FileExistsError: If the file already exists
    """
    description = normalize_migration_name(name)
    token = (now or datetime.now(timezone.utc)).strftime('%Y_%m_%d_%H%M%S')
    migrations_dir = Path(migrations_dir)
    migrations_dir.mkdir(parents=True, exist_ok=True)

    file_path = migrations_dir / f"{token}_{description}.yaml"
    if file_path.exists():
        raise FileExistsError(f"Migration file already exists: {file_path}")

    body = {'description': description.replace('_', ' ').capitalize()}
    body.update(_template_operations(description))

    header = (
        f"# Migration {token}_{description}\n"
        "# Edit the forward/backward operations below. Leave 'backward' empty\n"
        "# and set 'irreversible: true' if this change cannot be undone.\n"
    )
    file_path.write_text(
        header + yaml.safe_dump(body, sort_keys=False, default_flow_style=False),
        encoding='utf-8',
    )
    logger.info("Created migration file %s", file_path)
    return file_path
