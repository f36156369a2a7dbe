"""
Per-call configuration for load/update/subscribe.

Both models are frozen: a config is built once (defaults merged with
caller overrides) and never mutated afterwards. Field names accept
either snake_case or the camelCase spelling (restoreOnError, ...),
so config files written for other clients of the same storage load
unchanged.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

logger = logging.getLogger("superstorage.config")

DEFAULT_PHRASE = "default_phrase"

ErrorCallback = Callable[[Exception], Any]
ChangeHook = Callable[[Any, Any], Any]


class EncryptConfig(BaseModel):
    """Which parts of a record get obfuscated, and with what phrase."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    key: bool = False
    value: bool = False
    phrase: str = DEFAULT_PHRASE


class StorageConfig(BaseModel):
    """Options recognised by the persistence controller."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        alias_generator=to_camel,
        populate_by_name=True,
    )

    on_error: Optional[ErrorCallback] = None
    restore_on_error: bool = True
    use_broadcast_channel: bool = True
    encrypt: EncryptConfig = Field(default_factory=EncryptConfig)
    backup_on_error: bool = False
    debug: bool = False
    persist_initial: bool = Field(
        default=False,
        description="Write the initial value back when the record is missing",
    )
    on_change_before_validation: Optional[ChangeHook] = None
    on_change_after_validation: Optional[ChangeHook] = None


def merge_config(config: Optional[StorageConfig] = None, **overrides: Any) -> StorageConfig:
    """Return a new config: config (or the defaults) with overrides applied.

    Overrides are validated like constructor arguments, so
    ``encrypt={"value": True, "phrase": "x"}`` works.

    Args:
        config: Base config. Defaults to StorageConfig().
        **overrides: Field values to replace.

    Returns:
        A new StorageConfig; config itself is untouched.
    """
    base = config or StorageConfig()
    if not overrides:
        return base
    fields = {name: getattr(base, name) for name in StorageConfig.model_fields}
    fields.update(overrides)
    return StorageConfig.model_validate(fields)


def load_config(path: Path) -> StorageConfig:
    """Load a StorageConfig from a YAML file.

    Callbacks can't be expressed in YAML; only the plain options are read.

    Args:
        path: YAML file.

    Returns:
        The config from the file, or defaults if it is missing or invalid.
    """
    path = Path(path).expanduser()
    if not path.exists():
        return StorageConfig()
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        return StorageConfig.model_validate(data)
    except (yaml.YAMLError, ValueError) as exc:
        logger.warning("Failed to load config %s: %s -- using defaults", path, exc)
        return StorageConfig()
