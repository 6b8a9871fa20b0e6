"""
Object store for uploaded source files.

Only a local-filesystem store is provided; any object with a matching
``download``/``upload`` pair can be passed to the pipeline instead.
"""

import os
import logging
from pathlib import Path
from typing import Optional, Protocol

from .errors import StorageError

logger = logging.getLogger(__name__)


class ObjectStore(Protocol):
    def upload(self, path: str, data: bytes) -> str: ...

    def download(self, path: str) -> bytes: ...


class LocalObjectStore:
    """Stores files under a root directory, keyed by relative path."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or os.getenv("DOCUMENT_STORAGE_ROOT", "./storage")).resolve()

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise StorageError(f"Path escapes storage root: {path}", path=path)
        return target

    def upload(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.info(f"Stored {len(data)} bytes at {path}")
        return path

    def download(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            return target.read_bytes()
        except OSError as e:
            raise StorageError(f"Failed to download file: {e}", path=path) from e
