"""
Storage Abstraction Layer - The Bridge Pattern

Raw blob backends keyed by storage key. The image store sits on top and
owns ids, validation and expiry; backends only move bytes.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict

from effect_studio.core.config import Settings
from effect_studio.core.exceptions import StorageError
from effect_studio.core.logging import get_logger

logger = get_logger(__name__)


class IStorage(ABC):
    """Interface for blob operations - The Bridge"""

    @abstractmethod
    async def save(self, storage_key: str, data: bytes, content_type: str = "image/jpeg") -> None:
        """
        Write a blob under the given key.

        Keys are generated by the caller and never reused, so a save never
        overwrites a live blob.

        Raises:
            StorageError: the backend could not persist the bytes
        """

    @abstractmethod
    async def read(self, storage_key: str) -> bytes:
        """
        Read a blob.

        Raises:
            FileNotFoundError: the key is absent (never written, or deleted)
        """

    @abstractmethod
    async def delete(self, storage_key: str) -> bool:
        """Delete a blob. Returns True if something was removed."""

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Check if a blob exists."""


class LocalStorage(IStorage):
    """Local filesystem storage."""

    def __init__(self, base_path: str = "./data/storage"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, storage_key: str) -> Path:
        path = (self.base_path / storage_key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise FileNotFoundError(storage_key)
        return path

    async def save(self, storage_key: str, data: bytes, content_type: str = "image/jpeg") -> None:
        file_path = self._path(storage_key)
        try:
            await asyncio.to_thread(self._write, file_path, data)
        except OSError as e:
            raise StorageError(f"Failed to write {storage_key}: {e}") from e

    @staticmethod
    def _write(file_path: Path, data: bytes):
        file_path.parent.mkdir(parents=True, exist_ok=True)
        # Write to a temp name first so readers never observe a partial blob
        tmp_path = file_path.with_suffix(file_path.suffix + ".part")
        with open(tmp_path, "wb") as f:
            f.write(data)
        tmp_path.replace(file_path)

    async def read(self, storage_key: str) -> bytes:
        file_path = self._path(storage_key)
        return await asyncio.to_thread(file_path.read_bytes)

    async def delete(self, storage_key: str) -> bool:
        try:
            self._path(storage_key).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.warning("blob_delete_failed", storage_key=storage_key, error=str(e))
            return False

    async def exists(self, storage_key: str) -> bool:
        try:
            return self._path(storage_key).is_file()
        except FileNotFoundError:
            return False


class MemoryStorage(IStorage):
    """In-process storage, used for tests and ephemeral deployments."""

    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    async def save(self, storage_key: str, data: bytes, content_type: str = "image/jpeg") -> None:
        self._blobs[storage_key] = bytes(data)

    async def read(self, storage_key: str) -> bytes:
        try:
            return self._blobs[storage_key]
        except KeyError:
            raise FileNotFoundError(storage_key) from None

    async def delete(self, storage_key: str) -> bool:
        return self._blobs.pop(storage_key, None) is not None

    async def exists(self, storage_key: str) -> bool:
        return storage_key in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class StorageFactory:
    """Factory for creating the configured storage backend."""

    @staticmethod
    def create(config: Settings) -> IStorage:
        """Build a new backend for the given settings."""
        backend = config.STORAGE_BACKEND.lower()
        if backend == "memory":
            storage = MemoryStorage()
        elif backend == "local":
            storage = LocalStorage(base_path=config.LOCAL_STORAGE_PATH)
        else:
            raise ValueError(f"Unknown STORAGE_BACKEND: {config.STORAGE_BACKEND}")
        logger.info("storage_initialized", backend=backend)
        return storage
