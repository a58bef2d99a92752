"""
Storage Package

Provides abstract interfaces and concrete implementations for data storage.
Currently implements a SQLAlchemy backend, but designed to be swappable.
"""

from smart_input.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    FinanceStorageInterface,
    InsufficientFundsError,
    NotFoundError,
    StorageError,
)
from smart_input.storage.sql import (
    SqlAuditStorage,
    SqlFinanceStorage,
    create_storage_engine,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "FinanceStorageInterface",
    # Exceptions
    "DuplicateError",
    "InsufficientFundsError",
    "NotFoundError",
    "StorageError",
    # SQL implementation
    "SqlAuditStorage",
    "SqlFinanceStorage",
    "create_storage_engine",
]
