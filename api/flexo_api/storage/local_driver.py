"""Local filesystem archive storage driver."""

import os
from datetime import datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Any, Dict, List

import aiofiles
import aiofiles.os

from flexo_api.storage.base import BaseStorageDriver, FileInfo, StorageError


class LocalStorageDriver(BaseStorageDriver):
    """Local filesystem storage driver.

    Configuration:
        base_path: Directory holding the archives (created if missing)

    Example:
        >>> driver = LocalStorageDriver({"base_path": "/data/backups/machines"})
        >>> files = await driver.list_files("*.zip")
    """

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.base_path = Path(config["base_path"]).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _validate_path(self, file_path: str) -> Path:
        """Validate path is within base_path (prevent directory traversal).

        Args:
            file_path: Relative file path

        Returns:
            Absolute Path object

        Raises:
            StorageError: If path tries to escape base_path
        """
        full_path = (self.base_path / file_path).resolve()

        try:
            full_path.relative_to(self.base_path)
        except ValueError:
            raise StorageError(f"Path {file_path} attempts to escape base directory")

        return full_path

    async def list_files(self, pattern: str = "*") -> List[FileInfo]:
        """List files directly under base_path.

        Args:
            pattern: Glob pattern (default: "*" for all files)

        Returns:
            List of FileInfo dicts
        """
        if not self.base_path.exists():
            return []

        files = []
        try:
            entries = sorted(os.scandir(self.base_path), key=lambda entry: entry.name)
        except OSError as e:
            raise StorageError(f"Failed to list files: {e}")

        for entry in entries:
            if not entry.is_file() or not fnmatch(entry.name, pattern):
                continue
            stat = entry.stat()
            files.append(
                FileInfo(
                    {
                        "name": entry.name,
                        "path": entry.name,
                        "size_bytes": stat.st_size,
                        "modified_at": datetime.utcfromtimestamp(stat.st_mtime),
                    }
                )
            )

        return files

    async def download_file(self, file_path: str) -> bytes:
        """Read file from local filesystem.

        Args:
            file_path: Relative path to file

        Returns:
            File content as bytes
        """
        full_path = self._validate_path(file_path)

        if not full_path.is_file():
            raise FileNotFoundError(f"File not found: {file_path}")

        try:
            async with aiofiles.open(full_path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise StorageError(f"Failed to read {file_path}: {e}")

    async def upload_file(self, file_path: str, content: bytes) -> str:
        """Write file to local filesystem.

        The content goes to a temporary sibling first and is renamed into
        place, so readers never observe a half-written archive.

        Args:
            file_path: Destination path
            content: File content

        Returns:
            Path where file was saved
        """
        full_path = self._validate_path(file_path)
        full_path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = full_path.with_name(f".{full_path.name}.tmp")

        try:
            async with aiofiles.open(temp_path, "wb") as f:
                await f.write(content)
            await aiofiles.os.replace(temp_path, full_path)
        except OSError as e:
            raise StorageError(f"Failed to write {file_path}: {e}")

        return str(full_path.relative_to(self.base_path))

    async def delete_file(self, file_path: str) -> bool:
        """Delete file from local filesystem.

        Args:
            file_path: Relative path to file

        Returns:
            True if deleted, False if it did not exist
        """
        full_path = self._validate_path(file_path)

        if not full_path.is_file():
            return False

        try:
            await aiofiles.os.remove(full_path)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {file_path}: {e}")

        return True

    async def test_connection(self) -> bool:
        """Test if base path exists and is writable.

        Returns:
            True if base_path exists and is writable
        """
        try:
            return self.base_path.exists() and os.access(self.base_path, os.W_OK)
        except OSError:
            return False
