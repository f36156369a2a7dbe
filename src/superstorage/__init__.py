"""
superstorage -- typed, validated, optionally obfuscated key/value storage.

Values go in through a schema, come out through the same schema, and
every instance watching a key hears about writes from the others.
"""

import os

__version__ = "0.1.0"

STORAGE_HOME = os.environ.get("SUPERSTORAGE_HOME", "~/.superstorage")

from .broadcast import Broadcast, Channel, FileBroadcast, LocalBroadcast  # noqa: E402
from .config import EncryptConfig, StorageConfig, load_config, merge_config  # noqa: E402
from .controller import Storage, SyncedValue, ValueState  # noqa: E402
from .errors import (  # noqa: E402
    ChannelClosedError,
    DecodeError,
    LoadError,
    ObfuscationDecodeError,
    StoreError,
    SuperStorageError,
    ValidationError,
)
from .schema import SchemaNode, infer_schema, load_schema, s, schema_from_dict  # noqa: E402
from .store import FileStore, KeyValueStore, MemoryStore  # noqa: E402

__all__ = [
    "Broadcast",
    "Channel",
    "ChannelClosedError",
    "DecodeError",
    "EncryptConfig",
    "FileBroadcast",
    "FileStore",
    "KeyValueStore",
    "LoadError",
    "LocalBroadcast",
    "MemoryStore",
    "ObfuscationDecodeError",
    "SchemaNode",
    "Storage",
    "StorageConfig",
    "StoreError",
    "SuperStorageError",
    "SyncedValue",
    "ValidationError",
    "ValueState",
    "infer_schema",
    "load_config",
    "load_schema",
    "merge_config",
    "s",
    "schema_from_dict",
]
