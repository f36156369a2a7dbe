"""Shared utilities for the CLI command modules.

Provides the Rich console, the per-invocation context, and the
helpers that turn command-line options into a Storage and a config.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import click
import yaml
from rich.console import Console

from ..broadcast import FileBroadcast
from ..config import StorageConfig, load_config, merge_config
from ..controller import Storage
from ..schema import SchemaNode, StringSchema, infer_schema, load_schema
from ..store import FileStore

console = Console()
logger = logging.getLogger("superstorage.cli")


@dataclass(frozen=True)
class CliContext:
    """Options from the main group, shared with every command."""

    home: Path
    config_path: Path
    phrase: Optional[str] = None
    encrypt_key: Optional[bool] = None
    encrypt_value: Optional[bool] = None

    @property
    def store_dir(self) -> Path:
        return self.home / "store"

    @property
    def channels_dir(self) -> Path:
        return self.home / "channels"

    def open_storage(self) -> Storage:
        return Storage(FileStore(self.store_dir), FileBroadcast(self.channels_dir))

    def build_config(self, **overrides: Any) -> StorageConfig:
        """The config file, with obfuscation flags from the command line applied."""
        base = load_config(self.config_path)
        encrypt = base.encrypt.model_dump()
        if self.encrypt_key is not None:
            encrypt["key"] = self.encrypt_key
        if self.encrypt_value is not None:
            encrypt["value"] = self.encrypt_value
        if self.phrase is not None:
            encrypt["phrase"] = self.phrase
        return merge_config(base, encrypt=encrypt, **overrides)


def parse_value(text: str) -> Any:
    """JSON if it parses, otherwise the text itself."""
    try:
        return json.loads(text)
    except ValueError:
        return text


def resolve_schema(schema_path: Optional[str], sample: Any = None) -> SchemaNode:
    """Load the schema file, or infer one from sample (string if none)."""
    if schema_path:
        try:
            return load_schema(Path(schema_path))
        except (OSError, ValueError, yaml.YAMLError) as exc:
            logger.debug("Schema file %s rejected: %s", schema_path, exc)
            raise click.BadParameter(f"Invalid schema file: {exc}", param_hint="--schema") from exc
    if sample is not None:
        schema = infer_schema(sample)
        logger.debug("Inferred %s schema from the value", schema.kind)
        return schema
    return StringSchema()


def render(value: Any) -> str:
    """Format a value for output: strings as-is, everything else JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, indent=2, ensure_ascii=False)
