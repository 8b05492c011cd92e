"""Storage drivers for snapshot archives."""

from flexo_api.storage.base import BaseStorageDriver, StorageError
from flexo_api.storage.factory import get_storage_driver

__all__ = ["BaseStorageDriver", "StorageError", "get_storage_driver"]
