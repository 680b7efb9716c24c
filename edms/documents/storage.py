"""
EDMS Blob Store — Opaque byte storage for document payloads.

Contract:
    save(data, name, content_type) -> BlobSaveResult
    read(path)   -> (stream, content_type) | None
    delete(path) -> bool
    exists(path) -> bool
    max_size()   -> int
    is_allowed_type(content_type) -> bool

Implementations never raise for I/O failures; they report them through
the return value and the lifecycle manager decides what that means.

Physical layout (LocalBlobStore):
    <root>/<YYYY-MM>/<uuid><ext>
"""

from __future__ import annotations

import hashlib
import io
import logging
import mimetypes
import os
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterable, Optional, Tuple, Union

from edms.engine.config import DEFAULT_ALLOWED_CONTENT_TYPES

logger = logging.getLogger("edms.documents.storage")

CHUNK_SIZE = 8192
DEFAULT_MAX_SIZE = 10 * 1024 * 1024

EXTENSION_CONTENT_TYPES = {
    ".pdf": "application/pdf",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".doc": "application/msword",
    ".txt": "text/plain",
}


@dataclass
class BlobSaveResult:
    success: bool
    path: Optional[str] = None
    error: Optional[str] = None
    size: int = 0
    too_large: bool = False


class BlobStore(ABC):

    @abstractmethod
    def save(self, data: Union[bytes, BinaryIO], name: str, content_type: str) -> BlobSaveResult:
        ...

    @abstractmethod
    def read(self, path: str) -> Optional[Tuple[BinaryIO, str]]:
        ...

    @abstractmethod
    def delete(self, path: str) -> bool:
        ...

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def max_size(self) -> int:
        ...

    @abstractmethod
    def is_allowed_type(self, content_type: str) -> bool:
        ...


class LocalBlobStore(BlobStore):
    """
    Filesystem blob store.

    Payloads are streamed in 8 KiB chunks and capped at ``max_file_size``;
    a write that crosses the cap is removed and reported as too large.
    """

    def __init__(
        self,
        root: Union[str, Path],
        max_file_size: int = DEFAULT_MAX_SIZE,
        allowed_content_types: Optional[Iterable[str]] = None,
    ):
        self._root = Path(root).resolve()
        self._max_file_size = max_file_size
        self._allowed = {
            ct.lower() for ct in (allowed_content_types or DEFAULT_ALLOWED_CONTENT_TYPES)
        }
        self._root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(cls, storage_config) -> "LocalBlobStore":
        return cls(
            root=storage_config.path,
            max_file_size=storage_config.max_file_size_bytes,
            allowed_content_types=storage_config.allowed_content_types,
        )

    @property
    def root(self) -> Path:
        return self._root

    def max_size(self) -> int:
        return self._max_file_size

    def is_allowed_type(self, content_type: str) -> bool:
        return bool(content_type) and content_type.split(";")[0].strip().lower() in self._allowed

    def save(self, data: Union[bytes, BinaryIO], name: str, content_type: str) -> BlobSaveResult:
        if isinstance(data, (bytes, bytearray)):
            data = io.BytesIO(data)

        ext = os.path.splitext(self._safe_filename(name))[1].lower()
        relative = f"{datetime.now(timezone.utc):%Y-%m}/{uuid.uuid4()}{ext}"
        physical = self._root / relative

        bytes_written = 0
        file_hash = hashlib.sha256()
        try:
            physical.parent.mkdir(parents=True, exist_ok=True)
            with open(physical, "wb") as f:
                while True:
                    chunk = data.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    bytes_written += len(chunk)
                    if bytes_written > self._max_file_size:
                        break
                    f.write(chunk)
                    file_hash.update(chunk)
        except OSError as e:
            logger.error("Blob write failed for %s: %s", relative, e)
            self._remove(physical)
            return BlobSaveResult(success=False, error=f"Failed to save file: {e}")

        if bytes_written > self._max_file_size:
            self._remove(physical)
            return BlobSaveResult(
                success=False,
                error=f"File exceeds maximum size of {self._max_file_size} bytes",
                too_large=True,
            )

        logger.info(
            "Stored blob %s (%d bytes, sha256=%s)", relative, bytes_written, file_hash.hexdigest()[:12]
        )
        return BlobSaveResult(success=True, path=relative, size=bytes_written)

    def read(self, path: str) -> Optional[Tuple[BinaryIO, str]]:
        physical = self._resolve(path)
        if physical is None or not physical.is_file():
            return None
        try:
            stream = open(physical, "rb")
        except OSError as e:
            logger.error("Blob read failed for %s: %s", path, e)
            return None
        return stream, self.detect_content_type(physical.name)

    def delete(self, path: str) -> bool:
        physical = self._resolve(path)
        if physical is None or not physical.exists():
            return False
        return self._remove(physical)

    def exists(self, path: str) -> bool:
        physical = self._resolve(path)
        return physical is not None and physical.is_file()

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _resolve(self, path: Optional[str]) -> Optional[Path]:
        """Map a stored relative path to disk; anything escaping the root is rejected."""
        if not path:
            return None
        physical = (self._root / path).resolve()
        if physical != self._root and self._root not in physical.parents:
            logger.warning("Rejected blob path outside store root: %s", path)
            return None
        return physical

    @staticmethod
    def _remove(physical: Path) -> bool:
        try:
            if physical.exists():
                physical.unlink()
            return True
        except OSError as e:
            logger.error("Failed to delete %s: %s", physical, e)
            return False

    @staticmethod
    def _safe_filename(filename: str) -> str:
        """Strip path components, control characters and leading dots."""
        name = os.path.basename(filename or "")
        name = "".join(c for c in name if c.isprintable() and c not in '<>:"/\\|?*')
        return name.lstrip(".") or "unnamed_document"

    @staticmethod
    def detect_content_type(filename: str) -> str:
        ext = os.path.splitext(filename)[1].lower()
        if ext in EXTENSION_CONTENT_TYPES:
            return EXTENSION_CONTENT_TYPES[ext]
        mime, _ = mimetypes.guess_type(filename)
        return mime or "application/octet-stream"

    def __repr__(self) -> str:
        return f"<LocalBlobStore root='{self._root}' max={self._max_file_size}>"
