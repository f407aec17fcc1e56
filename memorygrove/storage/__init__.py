"""
Storage backend abstraction for media files.

Provides the adapter interface and the local filesystem backend.
"""

from memorygrove.storage.adapter import StorageAdapter, StorageError
from memorygrove.storage.filesystem import FilesystemStorage

__all__ = [
    "StorageAdapter",
    "StorageError",
    "FilesystemStorage",
]
