"""Repository adapters - In-memory and database implementations."""

from .memory import InMemoryEventCatalog, InMemoryRegistrationStore, InMemoryRetryRecordStore
from .postgres import (
    PostgresEventCatalog,
    PostgresRegistrationStore,
    PostgresRetryRecordStore,
    run_migrations,
)

__all__ = [
    "InMemoryEventCatalog",
    "InMemoryRegistrationStore",
    "InMemoryRetryRecordStore",
    "PostgresEventCatalog",
    "PostgresRegistrationStore",
    "PostgresRetryRecordStore",
    "run_migrations",
]
