"""
Artifact storage for uploaded source files and generated exports.

Artifacts are addressed by a storage key relative to the storage root; the
location returned alongside is what gets handed to downloaders.
"""

import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Union
from uuid import uuid4

import aiofiles
import aiofiles.os

from ..core.exceptions import StorageFailureError
from .logger import get_logger

_UNSAFE_CHARS = re.compile(r"[^a-zA-Z0-9._-]")


def safe_file_name(name: str, default: str = "file.csv") -> str:
    """Replace anything outside ``[A-Za-z0-9._-]`` with underscores."""
    cleaned = _UNSAFE_CHARS.sub("_", str(name or "").strip())
    return cleaned or default


@dataclass
class StoredArtifact:
    """Handle to a stored artifact."""

    key: str
    location: str
    size: int
    file_name: str


class LocalArtifactStorage:
    """
    Stores artifacts on the local filesystem under a root directory.

    All file I/O goes through aiofiles so the event loop is not blocked.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()
        self.logger = get_logger(__name__)

    def _path_for(self, key: str) -> Path:
        path = (self.root / key).resolve()
        if self.root not in path.parents:
            raise StorageFailureError("resolve", "Key escapes storage root", key=key)
        return path

    async def save(self, data: bytes, file_name: str, folder: str = "csv") -> StoredArtifact:
        """
        Persist bytes under a fresh key.

        Args:
            data: Content to store
            file_name: Desired file name (sanitised)
            folder: Sub-folder grouping artifacts by purpose

        Returns:
            StoredArtifact describing where the bytes live

        Raises:
            StorageFailureError: If the file cannot be written
        """
        name = safe_file_name(file_name)
        key = f"{safe_file_name(folder, 'csv')}/{uuid4().hex}-{name}"
        path = self._path_for(key)

        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            async with aiofiles.open(path, "wb") as handle:
                await handle.write(data)
        except OSError as e:
            raise StorageFailureError("save", str(e), key=key)

        self.logger.debug("Artifact stored", extra={"key": key, "size": len(data)})
        return StoredArtifact(key=key, location=path.as_uri(), size=len(data), file_name=name)

    async def read(self, key: str) -> bytes:
        """Read a stored artifact; a missing or unreadable file is a StorageFailureError."""
        path = self._path_for(key)
        try:
            async with aiofiles.open(path, "rb") as handle:
                return await handle.read()
        except OSError as e:
            raise StorageFailureError("read", str(e), key=key)

    async def delete(self, key: str) -> bool:
        """Remove an artifact. Returns False if it did not exist."""
        path = self._path_for(key)
        try:
            await aiofiles.os.remove(path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageFailureError("delete", str(e), key=key)

    async def exists(self, key: str) -> bool:
        return await aiofiles.os.path.exists(self._path_for(key))

    def ensure_root(self) -> None:
        os.makedirs(self.root, exist_ok=True)
