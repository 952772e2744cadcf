"""State persistence."""

from .persistence import (
    FileStorageBackend,
    InMemoryStorageBackend,
    StatePersister,
    StorageBackend,
)

__all__ = ["StorageBackend", "FileStorageBackend", "InMemoryStorageBackend", "StatePersister"]
