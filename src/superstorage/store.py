"""
Byte stores -- where stored records live.

The controller only ever talks to the KeyValueStore interface, so
the backing store is whatever the caller injects:

MemoryStore: Plain dict. Tests, embedding, throwaway state.
FileStore: One file per key under a directory. Survives restarts and
    is shared by every process on the same machine.

Keys are arbitrary strings (obfuscated keys contain '/', '+' and '='),
values are raw bytes. Backend failures surface as StoreError.
"""

from __future__ import annotations

import base64
import contextlib
import hashlib
import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import StoreError

logger = logging.getLogger("superstorage.store")


class KeyValueStore(ABC):
    """Abstract key/value byte store.

    Single-key reads and writes are atomic; there are no cross-key
    transactions. Concurrent writers to one key: last write wins.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[bytes]:
        """Read a record.

        Args:
            key: Storage key.

        Returns:
            The stored bytes, or None if the key is absent.
        """

    @abstractmethod
    def set(self, key: str, data: bytes) -> None:
        """Write (or overwrite) a record."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a record. Deleting an absent key is a no-op."""

    @abstractmethod
    def clear(self) -> None:
        """Remove every record."""

    @abstractmethod
    def keys(self) -> list[str]:
        """List every stored key, sorted."""

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None


class MemoryStore(KeyValueStore):
    """In-process dict-backed store."""

    def __init__(self, initial: Optional[dict[str, bytes]] = None) -> None:
        self._data: dict[str, bytes] = dict(initial or {})

    def get(self, key: str) -> Optional[bytes]:
        return self._data.get(key)

    def set(self, key: str, data: bytes) -> None:
        if not isinstance(data, (bytes, bytearray)):
            raise StoreError(f"Expected bytes, got {type(data).__name__}", key)
        self._data[key] = bytes(data)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()

    def keys(self) -> list[str]:
        return sorted(self._data)


class StoredRecord(BaseModel):
    """One FileStore record, as written to disk."""

    key: str
    data: str = Field(description="Base64 of the raw record bytes")
    written_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def raw(self) -> bytes:
        return base64.b64decode(self.data)


class FileStore(KeyValueStore):
    """Directory-backed store, one file per key.

    File names are the SHA-256 of the UTF-8 key, so any key of any
    length is filesystem safe. The key itself is kept inside the
    record, which is what keys() reports. Writes go to a temp file
    that is renamed into place, so readers never see a half-written
    record.

    Storage layout:
        <root>/
        ├── 04f8996d...a9.rec      # {"key": "user", "data": "<base64>", ...}
        └── ...

    Args:
        root: Directory holding the records. Created on first write.
    """

    SUFFIX = ".rec"

    def __init__(self, root: Path) -> None:
        self.root = Path(root).expanduser()

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / f"{digest}{self.SUFFIX}"

    def _read_record(self, path: Path) -> StoredRecord:
        return StoredRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        try:
            record = self._read_record(path)
        except FileNotFoundError:
            return None
        except (OSError, PydanticValidationError) as exc:
            raise StoreError(f"Failed to read {path.name}: {exc}", key) from exc
        if record.key != key:
            logger.warning("Record %s belongs to another key", path.name)
            return None
        return record.raw

    def set(self, key: str, data: bytes) -> None:
        if not isinstance(data, (bytes, bytearray)):
            raise StoreError(f"Expected bytes, got {type(data).__name__}", key)

        record = StoredRecord(key=key, data=base64.b64encode(bytes(data)).decode("ascii"))
        final_path = self._path(key)
        tmp_path = self.root / f".{final_path.name}.{uuid.uuid4().hex[:8]}.tmp"
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            tmp_path.write_text(record.model_dump_json(), encoding="utf-8")
            os.replace(tmp_path, final_path)
        except OSError as exc:
            with contextlib.suppress(OSError):
                tmp_path.unlink(missing_ok=True)
            raise StoreError(f"Failed to write {final_path.name}: {exc}", key) from exc
        logger.debug("Wrote %d bytes to %s", len(data), final_path.name)

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as exc:
            raise StoreError(f"Failed to delete record: {exc}", key) from exc

    def clear(self) -> None:
        if not self.root.is_dir():
            return
        removed = 0
        for path in self.root.glob(f"*{self.SUFFIX}"):
            try:
                path.unlink()
                removed += 1
            except OSError as exc:
                raise StoreError(f"Failed to clear {path.name}: {exc}") from exc
        logger.info("Cleared %d records from %s", removed, self.root)

    def keys(self) -> list[str]:
        if not self.root.is_dir():
            return []
        found: list[str] = []
        for path in self.root.glob(f"*{self.SUFFIX}"):
            try:
                found.append(self._read_record(path).key)
            except FileNotFoundError:
                continue
            except (OSError, PydanticValidationError) as exc:
                logger.warning("Skipping unreadable record %s: %s", path.name, exc)
        return sorted(found)
