"""
Persistence substrates for the local record store.

A backend maps string keys to raw bytes. It knows nothing about the record
schema; the store encodes and decodes on top of it.

- MemoryBackend: a dict, for tests and throwaway sessions
- FileBackend: one file per key in a cache directory
"""

import hashlib
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional, Union

from nebulaflow_toolkit.shared.constants import GlobalConstants


class StorageBackend(ABC):
    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Raw bytes stored under key, None when absent."""

    @abstractmethod
    def set(self, key: str, value: bytes) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        """Delete key. Removing a missing key is a no-op."""

    @abstractmethod
    def clear(self) -> None:
        """Delete every key held by this backend."""


class MemoryBackend(StorageBackend):
    def __init__(self, initial: Optional[Dict[str, bytes]] = None):
        self._data: Dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, value: bytes) -> None:
        self._data[key] = bytes(value)

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def __contains__(self, key: str) -> bool:
        return key in self._data


class FileBackend(StorageBackend):
    """
    File-per-key backend.

    File names are a sha256 of the key, so arbitrary keys (user addresses
    included) map to safe names. Writes go to a temp file in the same
    directory and are moved into place, so a crash mid-write leaves the
    previous value intact.
    """

    SUFFIX = ".cache"

    def __init__(self, directory: Optional[Union[str, Path]] = None):
        self.directory = Path(directory or GlobalConstants.get_cache_dir())
        self.directory.mkdir(parents=True, exist_ok=True)

    def _get_path(self, key: str) -> Path:
        safe_key = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{safe_key}{self.SUFFIX}"

    def get(self, key: str) -> Optional[bytes]:
        path = self._get_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def set(self, key: str, value: bytes) -> None:
        path = self._get_path(key)
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(value)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def remove(self, key: str) -> None:
        try:
            self._get_path(key).unlink()
        except FileNotFoundError:
            pass

    def clear(self) -> None:
        for cache_file in self.directory.glob(f"*{self.SUFFIX}"):
            cache_file.unlink()
