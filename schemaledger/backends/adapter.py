"""
Abstract schema backend for migration execution.

This module defines the SchemaBackend abstract base class that all
backend implementations must inherit from. It provides a database-agnostic
interface for applying structural operations, grouping them into atomic
units, and serializing migration runs with an advisory lock.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncContextManager, AsyncIterator, Collection, List, Optional

from schemaledger.migrations.operations import Operation


class SchemaBackend(ABC):
    """
    Abstract interface for the migration target.

    The engine treats the database as a capability: apply an operation,
    group operations in a transaction, drop everything, take a lock.
    All methods are async to support asynchronous database drivers.

    Attributes:
        logger: Logger instance for backend events
        is_connected: Backend connection status

    Example:
        >>> backend = SQLAlchemyBackend(Database(':memory:'), tables)
        >>> await backend.connect()
        >>> async with backend.lock('cli:1234'):
        ...     async with backend.transaction() as conn:
        ...         await backend.apply(CreateTable('users', [...]), conn)
    """

    def __init__(self, logger: Optional[logging.Logger] = None):
        """
        Initialize backend.

        Args:
            logger: Optional logger instance. If None, creates default logger.
        """
        self.logger = logger or logging.getLogger(self.__class__.__name__)
        self._is_connected = False

    @abstractmethod
    async def connect(self) -> None:
        """
        Prepare the backend for use.

        This method should:
        1. Verify the database connection
        2. Create the ledger and lock tables if missing
        3. Set is_connected = True
        """

    @abstractmethod
    async def close(self) -> None:
        """
        Release all resources.

        Should not raise on an already closed backend.
        """

    @property
    def is_connected(self) -> bool:
        """
        Check if backend is connected.

        Returns:
            True if connected and ready for operations, False otherwise
        """
        return self._is_connected

    # ==================== Capabilities ====================

    @property
    @abstractmethod
    def supports_transactional_ddl(self) -> bool:
        """Whether structural changes can be rolled back with a transaction."""

    @abstractmethod
    def transaction(self) -> AsyncContextManager[Any]:
        """
        Open one atomic unit.

        Yields a connection handle that apply(), drop_all() and the ledger
        accept. Committed on normal exit, rolled back on exception. On a
        backend without transactional DDL, structural changes made inside
        are NOT undone by the rollback.
        """

    @abstractmethod
    def connection(self) -> AsyncContextManager[Any]:
        """Open a connection for consistent reads."""

    # ==================== Structural Operations ====================

    @abstractmethod
    async def apply(self, operation: Operation, conn: Any) -> None:
        """
        Apply one structural operation.

        Args:
            operation: Operation to apply
            conn: Connection handle from transaction()

        Raises:
            Exception: Any driver error; the executor reports it
        """

    @abstractmethod
    async def drop_all(self, conn: Any, exclude: Collection[str] = ()) -> List[str]:
        """
        Drop every structural object except the excluded tables.

        Args:
            conn: Connection handle from transaction()
            exclude: Table names to keep (the ledger tables)

        Returns:
            Names of dropped objects
        """

    # ==================== Locking ====================

    @abstractmethod
    async def acquire_lock(self, owner: str, timeout: float) -> None:
        """
        Acquire the exclusive migration lock.

        Args:
            owner: Identifier of the acquiring process
            timeout: Seconds to wait before giving up

        Raises:
            LockContention: If the lock is held elsewhere past the timeout
        """

    @abstractmethod
    async def release_lock(self, owner: str) -> None:
        """Release the lock held by owner."""

    @asynccontextmanager
    async def lock(self, owner: str, timeout: float = 10.0) -> AsyncIterator[None]:
        """
        Hold the migration lock for the duration of the block.

        The lock is released on every exit path, including exceptions
        and cancellation.
        """
        await self.acquire_lock(owner, timeout)
        try:
            yield
        finally:
            await self.release_lock(owner)
