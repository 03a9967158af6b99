#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Configuration loading and logging setup.

Configuration comes from a JSON or YAML file (chosen by extension), with
environment variables taking precedence for the connection settings:

    SCHEMALEDGER_DATABASE_URL    overrides database_url
    SCHEMALEDGER_MIGRATIONS_DIR  overrides migrations_dir

Example config.yaml:
    database_url: sqlite+aiosqlite:///app.db
    migrations_dir: migrations
    lock_timeout: 10
    logging:
      level: info
"""
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from schemaledger.database import normalize_database_url
from schemaledger.errors import ConfigError
from schemaledger.models import DEFAULT_LEDGER_TABLE, DEFAULT_LOCK_TABLE

LOG_FORMAT = '[%(asctime).19s] [%(name)s] [%(levelname)s] %(message)s'

ENV_DATABASE_URL = 'SCHEMALEDGER_DATABASE_URL'
ENV_MIGRATIONS_DIR = 'SCHEMALEDGER_MIGRATIONS_DIR'

CONFIG_KEYS = frozenset({
    'database_url', 'migrations_dir', 'ledger_table', 'lock_table',
    'lock_timeout', 'lock_stale_after', 'transactional_ddl', 'logging',
})


class RobustFileHandler(logging.FileHandler):
    """FileHandler that gracefully handles flush errors on Windows"""

    def flush(self):
        try:
            super().flush()
        except OSError as e:
            # EINVAL on an inconsistent Windows file handle
            if e.errno != 22:
                raise


def configure_logging(level: Union[str, int] = logging.INFO,
                      log_file: Optional[str] = None,
                      log_format: str = LOG_FORMAT,
                      logger: Union[str, logging.Logger] = 'schemaledger'):
    """Configure a logger with a file or stream handler

    Args:
        level: Logging level name ('debug', 'info', ...) or number
        log_file: File path (None for stderr)
        log_format: Format string for log messages
        logger: Logger instance or logger name string

    Returns:
        Configured logger instance
    """
    if isinstance(level, str):
        level_name = level
        level = logging.getLevelName(level_name.upper())
        if not isinstance(level, int):
            raise ConfigError(f"Unknown log level: {level_name}")

    if log_file:
        handler = RobustFileHandler(log_file, mode='a', encoding='utf-8', errors='replace')
    else:
        handler = logging.StreamHandler()

    handler.setFormatter(logging.Formatter(log_format))

    if isinstance(logger, str):
        logger = logging.getLogger(logger)

    logger.addHandler(handler)
    logger.setLevel(level)
    return logger


@dataclass
class MigratorConfig:
    """
    Engine configuration.

    Attributes:
        database_url: SQLAlchemy URL (plain paths and ':memory:' are normalized)
        migrations_dir: Directory holding migration files
        ledger_table: Name of the ledger table
        lock_table: Name of the lock/control table
        lock_timeout: Seconds to wait for the migration lock
        lock_stale_after: Seconds after which a held lock may be taken
            over (None disables takeover)
        transactional_ddl: Force transactional DDL on/off (None detects
            from the dialect)
        log_level: Logging level name
        log_file: Log file path (None for stderr)
    """
    database_url: str = 'sqlite+aiosqlite:///app.db'
    migrations_dir: Path = Path('migrations')
    ledger_table: str = DEFAULT_LEDGER_TABLE
    lock_table: str = DEFAULT_LOCK_TABLE
    lock_timeout: float = 10.0
    lock_stale_after: Optional[float] = None
    transactional_ddl: Optional[bool] = None
    log_level: str = 'info'
    log_file: Optional[str] = None

    def __post_init__(self):
        self.database_url = normalize_database_url(str(self.database_url))
        self.migrations_dir = Path(self.migrations_dir)
        if self.lock_timeout < 0:
            raise ConfigError(f"lock_timeout must be >= 0, got {self.lock_timeout}")
        if self.lock_stale_after is not None and self.lock_stale_after <= 0:
            raise ConfigError(
                f"lock_stale_after must be > 0, got {self.lock_stale_after}"
            )

    @classmethod
    def from_dict(cls, conf: Dict[str, Any]) -> 'MigratorConfig':
        """Build from a parsed config file."""
        unknown = set(conf) - CONFIG_KEYS
        if unknown:
            raise ConfigError(f"Unknown config key(s): {', '.join(sorted(unknown))}")

        kwargs = {k: v for k, v in conf.items() if k != 'logging' and v is not None}
        log_conf = conf.get('logging') or {}
        if 'level' in log_conf:
            kwargs['log_level'] = log_conf['level']
        if 'file' in log_conf:
            kwargs['log_file'] = log_conf['file']
        try:
            return cls(**kwargs)
        except TypeError as e:
            raise ConfigError(f"Invalid config: {e}") from e


def read_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
    """Load a JSON or YAML configuration file

    Returns:
        Parsed configuration dictionary
    """
    config_file = Path(config_file)
    if not config_file.exists():
        raise ConfigError(f"Config file not found: {config_file}")

    try:
        with open(config_file, 'r', encoding='utf-8') as fp:
            if config_file.suffix in ('.yaml', '.yml'):
                conf = yaml.safe_load(fp)
            else:
                conf = json.load(fp)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigError(f"Config file {config_file} could not be parsed: {e}") from e

    if conf is None:
        return {}
    if not isinstance(conf, dict):
        raise ConfigError(f"Config file {config_file} must contain a mapping")
    return conf


def load_config(path: Optional[Union[str, Path]] = None,
                environ: Optional[Dict[str, str]] = None) -> MigratorConfig:
    """Load configuration from file and environment

    Args:
        path: Config file (None for defaults only)
        environ: Environment mapping (defaults to os.environ)

    Returns:
        MigratorConfig
    """
    conf = read_config_file(path) if path else {}
    environ = os.environ if environ is None else environ

    if environ.get(ENV_DATABASE_URL):
        conf['database_url'] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_MIGRATIONS_DIR):
        conf['migrations_dir'] = environ[ENV_MIGRATIONS_DIR]

    return MigratorConfig.from_dict(conf)
