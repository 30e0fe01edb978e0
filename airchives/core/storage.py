"""
Storage Abstraction Layer

Provides a clean interface for the image store used for garment uploads and
generated outputs. LocalStorage is the active implementation; anything
implementing IStorage can be swapped in through StorageFactory.
"""

import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from datetime import datetime

from airchives.core.config import settings
from airchives.core.exceptions import StorageError
from airchives.core.logging import get_logger

logger = get_logger(__name__)


class IStorage(ABC):
    """Interface for storage operations."""

    @abstractmethod
    async def upload(
        self,
        file_data: bytes,
        filename: str,
        folder: str = "uploads",
        content_type: str = "image/png"
    ) -> str:
        """
        Upload a file and return its unique storage key.

        Args:
            file_data: Raw bytes of the file
            filename: Original filename (only the extension is kept)
            folder: Subfolder/container prefix
            content_type: MIME type of the file

        Returns:
            Storage key that can be used with get_url() and delete()
        """

    @abstractmethod
    async def get_url(self, storage_key: str) -> str:
        """Get an absolute URL for accessing the file."""

    @abstractmethod
    async def delete(self, storage_key: str) -> bool:
        """
        Delete a file from storage.

        Returns:
            True if deleted, False if it did not exist or could not be removed
        """

    @abstractmethod
    async def exists(self, storage_key: str) -> bool:
        """Check if a file exists in storage."""


class LocalStorage(IStorage):
    """Local filesystem storage served under /static/storage."""

    def __init__(self, base_path: str = "./data/storage", public_base_url: str = "http://localhost:8000"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    def _get_unique_filename(self, filename: str) -> str:
        """Keep the caller's stem readable and make it unique."""
        path = Path(filename)
        stem = path.stem or "file"
        unique_id = uuid.uuid4().hex[:12]
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{stem}_{timestamp}_{unique_id}{path.suffix}"

    def _resolve(self, storage_key: str) -> Path:
        file_path = (self.base_path / storage_key).resolve()
        if self.base_path.resolve() not in file_path.parents:
            raise StorageError(f"Storage key escapes storage root: {storage_key}")
        return file_path

    async def upload(
        self,
        file_data: bytes,
        filename: str,
        folder: str = "uploads",
        content_type: str = "image/png"
    ) -> str:
        folder_path = self.base_path / folder
        unique_filename = self._get_unique_filename(filename)
        storage_key = f"{folder}/{unique_filename}"

        try:
            folder_path.mkdir(parents=True, exist_ok=True)
            with open(folder_path / unique_filename, "wb") as f:
                f.write(file_data)
        except OSError as e:
            raise StorageError(f"Failed to store {storage_key}: {e}") from e

        logger.debug("storage_upload", storage_key=storage_key, size_bytes=len(file_data))
        return storage_key

    async def get_url(self, storage_key: str) -> str:
        if not self._resolve(storage_key).exists():
            raise StorageError(f"File not found: {storage_key}")
        return f"{self.public_base_url}/static/storage/{storage_key}"

    async def delete(self, storage_key: str) -> bool:
        file_path = self._resolve(storage_key)
        try:
            if file_path.exists():
                file_path.unlink()
                return True
            return False
        except OSError as e:
            logger.warning("storage_delete_failed", storage_key=storage_key, error=str(e))
            return False

    async def exists(self, storage_key: str) -> bool:
        return self._resolve(storage_key).exists()


class StorageFactory:
    """Factory holding the process-wide storage instance."""

    _instance: Optional[IStorage] = None

    @classmethod
    def get_storage(cls) -> IStorage:
        if cls._instance is None:
            cls._instance = LocalStorage(
                base_path=settings.LOCAL_STORAGE_PATH,
                public_base_url=settings.PUBLIC_BASE_URL
            )
        return cls._instance

    @classmethod
    def reset(cls):
        """Reset the singleton instance (useful for testing)."""
        cls._instance = None


def get_storage() -> IStorage:
    """Get the storage instance - ready for FastAPI Depends()."""
    return StorageFactory.get_storage()
