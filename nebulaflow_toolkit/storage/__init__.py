from nebulaflow_toolkit.storage.backends import (
    FileBackend,
    MemoryBackend,
    StorageBackend,
)
from nebulaflow_toolkit.storage.record_store import LocalRecordStore

__all__ = [
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "LocalRecordStore",
]
