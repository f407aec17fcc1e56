"""
Filesystem storage backend implementation.

Stores files in a local directory structure:
- {media_root}/{asset_key}/original.{ext} - normalized original
- {media_root}/{asset_key}/image.webp - primary derivative
- {media_root}/{asset_key}/thumb_big.webp, thumb_small.webp - thumbnails

Stored paths are returned relative to the media root with a ``media/``
prefix, the form the catalog keeps.
"""

import logging
import os
import shutil
from pathlib import Path

from memorygrove.storage.adapter import StorageAdapter, StorageError

logger = logging.getLogger(__name__)

PATH_PREFIX = "media"


class FilesystemStorage(StorageAdapter):
    """Filesystem-based media storage."""

    def __init__(self, base_path: str = "./media"):
        """
        Initialize filesystem storage.

        Args:
            base_path: Root directory for all media
        """
        self.base_path = Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _to_stored_path(self, path: Path) -> str:
        relative_path = path.relative_to(self.base_path)
        return f"{PATH_PREFIX}/{relative_path.as_posix()}"

    def resolve(self, stored_path: str) -> Path:
        """
        Convert a stored path back to an absolute filesystem path.

        Raises:
            StorageError: If the path does not belong to this storage
        """
        prefix = f"{PATH_PREFIX}/"
        if not stored_path.startswith(prefix):
            raise StorageError(f"Invalid stored path: {stored_path}")
        resolved = (self.base_path / stored_path[len(prefix):]).resolve()
        if self.base_path not in resolved.parents:
            raise StorageError(f"Path escapes media root: {stored_path}")
        return resolved

    def create_asset_dir(self, asset_key: str) -> Path:
        try:
            asset_dir = self.base_path / asset_key
            asset_dir.mkdir(parents=True, exist_ok=False)
            return asset_dir
        except OSError as e:
            raise StorageError(f"Failed to create asset directory: {e}") from e

    def write(self, asset_dir: Path, filename: str, content: bytes) -> str:
        if not content:
            raise StorageError(f"Refusing to write empty file {filename}")
        target_path = asset_dir / filename
        tmp_path = asset_dir / f".{filename}.tmp"
        try:
            with open(tmp_path, 'wb') as f:
                f.write(content)
            os.replace(tmp_path, target_path)
        except OSError as e:
            raise StorageError(f"Failed to write {filename}: {e}") from e
        return self._to_stored_path(target_path)

    def exists(self, path: str) -> bool:
        try:
            return self.resolve(path).exists()
        except StorageError:
            return False

    def delete_asset_dir(self, asset_dir: Path) -> None:
        try:
            if asset_dir.exists():
                shutil.rmtree(asset_dir)
        except OSError as e:
            logger.error(f"Failed to remove asset directory {asset_dir}: {e}")

    def delete_file(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove file {path}: {e}")
