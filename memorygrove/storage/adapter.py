"""
Abstract base class for media storage backends.

Defines the interface the ingestion worker uses to write derivatives and
clean them up.
"""

from abc import ABC, abstractmethod
from pathlib import Path


class StorageError(Exception):
    """Exception raised for storage-related errors."""
    pass


class StorageAdapter(ABC):
    """
    Abstract base class for storage backends.

    Every processed image gets its own asset directory holding the
    normalized original and its WebP derivatives.
    """

    @abstractmethod
    def create_asset_dir(self, asset_key: str) -> Path:
        """
        Create the directory for one asset's files.

        Args:
            asset_key: Unique key for the asset (used as directory name)

        Returns:
            Path to the created directory

        Raises:
            StorageError: If the directory cannot be created
        """
        pass

    @abstractmethod
    def write(self, asset_dir: Path, filename: str, content: bytes) -> str:
        """
        Write a file into an asset directory.

        Returns:
            Stored path as a string, relative to the storage root

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    def exists(self, path: str) -> bool:
        """Check if a stored path exists."""
        pass

    @abstractmethod
    def delete_asset_dir(self, asset_dir: Path) -> None:
        """Remove an asset directory and everything in it (best-effort)."""
        pass

    @abstractmethod
    def delete_file(self, path: str) -> None:
        """Remove a single file (best-effort)."""
        pass
