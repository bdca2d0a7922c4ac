"""Local blob storage for uploaded files."""

from __future__ import annotations

import asyncio
from pathlib import Path, PurePath

from .config import config
from .errors import StorageError

logger = config.get_logger(__name__)


class LocalFileStorage:
    """Stores uploads at ``{conversation_id}/{document_id}/{filename}``."""

    def __init__(
        self,
        root: Path | None = None,
        max_file_size: int | None = None,
    ) -> None:
        self.root = Path(root if root is not None else config.STORAGE_DIR)
        self.root.mkdir(exist_ok=True, parents=True)
        self.max_file_size = (
            config.MAX_FILE_SIZE_BYTES if max_file_size is None else max_file_size
        )

    def _resolve(self, storage_path: str) -> Path:
        path = (self.root / storage_path).resolve()
        if not path.is_relative_to(self.root.resolve()):
            msg = f"Storage path escapes storage root: {storage_path}"
            raise StorageError(msg)
        return path

    def _save(self, storage_path: str, data: bytes) -> None:
        path = self._resolve(storage_path)
        path.parent.mkdir(exist_ok=True, parents=True)
        try:
            with path.open("xb") as file:
                file.write(data)
        except FileExistsError as exc:
            msg = f"File already exists in storage: {storage_path}"
            raise StorageError(msg) from exc
        except OSError as exc:
            msg = f"Failed to write file to storage: {exc}"
            raise StorageError(msg) from exc

    async def save(
        self,
        data: bytes,
        conversation_id: str,
        document_id: str,
        filename: str,
    ) -> str:
        """Persist an upload and return its storage path.

        Raises:
            StorageError: If the payload is too large or the write fails.
        """  # noqa: DOC201
        if len(data) > self.max_file_size:
            limit_mb = self.max_file_size / 1024 / 1024
            msg = f"File size exceeds maximum limit of {limit_mb:g}MB"
            raise StorageError(msg)
        storage_path = f"{conversation_id}/{document_id}/{PurePath(filename).name}"
        await asyncio.to_thread(self._save, storage_path, data)
        logger.info("Stored %d bytes at %s", len(data), storage_path)
        return storage_path

    def _read(self, storage_path: str) -> bytes:
        path = self._resolve(storage_path)
        try:
            return path.read_bytes()
        except FileNotFoundError as exc:
            msg = f"Document file not found: {storage_path}"
            raise StorageError(msg) from exc
        except OSError as exc:
            msg = f"Failed to read file from storage: {exc}"
            raise StorageError(msg) from exc

    async def read(self, storage_path: str) -> bytes:
        return await asyncio.to_thread(self._read, storage_path)

    def _delete(self, storage_path: str) -> None:
        self._resolve(storage_path).unlink(missing_ok=True)

    async def delete(self, storage_path: str) -> None:
        """Remove a stored file; missing files are ignored."""
        await asyncio.to_thread(self._delete, storage_path)
