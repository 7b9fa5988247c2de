"""AdAudit - Object Storage.

``ObjectStore`` is the contract the importer uploads through; the local
filesystem backend is what the app serves under ``/assets``.
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path

from app.config import settings
from app.core.logging import get_logger

logger = get_logger("storage.objects")


class StorageError(Exception):
    """Raised when an object cannot be written."""


class ObjectStore(ABC):
    """Upsert-capable blob store with public URLs."""

    @abstractmethod
    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        """Store ``data`` at ``path``, overwriting any existing object.

        Raises:
            StorageError: if the object could not be written.
        """

    @abstractmethod
    def get_public_url(self, path: str) -> str:
        """Public URL for a stored path."""


class LocalObjectStore(ObjectStore):
    """Stores objects as files under ``<root>/<bucket>/``."""

    def __init__(
        self,
        root: str | None = None,
        public_base_url: str | None = None,
        bucket: str | None = None,
    ):
        self.bucket = bucket or settings.storage_bucket
        self.root = Path(root or settings.storage_root)
        self.public_base_url = (public_base_url or settings.storage_public_base_url).rstrip("/")

    def _file_path(self, path: str) -> Path:
        target = (self.root / self.bucket / path).resolve()
        base = (self.root / self.bucket).resolve()
        if base not in target.parents:
            raise StorageError(f"Path escapes bucket: {path}")
        return target

    def _write(self, target: Path, data: bytes) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.with_suffix(target.suffix + ".part")
        tmp.write_bytes(data)
        tmp.replace(target)

    async def upload(self, path: str, data: bytes, content_type: str) -> None:
        target = self._file_path(path)
        try:
            await asyncio.to_thread(self._write, target, data)
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e
        logger.info(f"Stored {len(data)} bytes ({content_type}) at {path}")

    def get_public_url(self, path: str) -> str:
        return f"{self.public_base_url}/{self.bucket}/{path.lstrip('/')}"
