"""
Schema backends the migration engine applies operations through.
"""

from .adapter import SchemaBackend
from .sqlalchemy_backend import SQLAlchemyBackend

__all__ = [
    'SchemaBackend',
    'SQLAlchemyBackend',
]
