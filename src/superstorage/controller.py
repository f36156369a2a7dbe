"""
Persistence-and-sync controller.

Orchestrates the full pipeline around one logical key:

    load      store.get -> obfuscate.decode -> json / raw -> schema.parse
    update    schema.parse -> serialise -> obfuscate.encode -> store.set -> publish
    remote    message -> obfuscate.decode -> json / raw -> schema.parse

Nothing here raises across load/update/subscribe in steady state.
Every failure goes to the caller's error callback (and to the log when
debug is on), and the value handed back is always a well-typed one:
the freshly validated value, the initial value, or the last good one.
The single exception is load() with restore_on_error disabled, which
raises LoadError -- that is construction time, not steady state.

The byte store and the broadcast transport are injected, so the same
controller runs over a dict in tests and over files in production.

Usage:
    storage = Storage(FileStore(home / "store"), FileBroadcast(home / "channels"))
    user = s.object({"name": s.string().required(), "age": s.number()})

    current = storage.load("user", user, {"name": "", "age": 0})
    storage.update("user", user, {"name": "Bob", "age": 40})

    with SyncedValue(storage, "user", user, {"name": "", "age": 0}) as synced:
        synced.set(lambda old: {**old, "age": old["age"] + 1})
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Optional

from . import obfuscate
from .broadcast import Broadcast
from .config import StorageConfig, merge_config
from .errors import DecodeError, LoadError, SuperStorageError
from .schema import SchemaNode, StringSchema, parse
from .store import KeyValueStore

logger = logging.getLogger("superstorage.controller")

_MISSING = object()

ErrorHandler = Callable[[Exception], Any]


class ValueState(str, Enum):
    """Lifecycle of a SyncedValue."""

    UNINITIALIZED = "uninitialized"
    LOADED = "loaded"
    UPDATED = "updated"
    REMOTE_UPDATED = "remote-updated"
    CLOSED = "closed"


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------

def serialize(value: Any) -> str:
    """Strings verbatim, everything else as compact JSON."""
    if isinstance(value, str):
        return value
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def decode_payload(text: str, schema: SchemaNode) -> Any:
    """Turn a stored payload back into an untyped value.

    Strict JSON first (no NaN or Infinity); anything that isn't JSON is
    taken as a raw string.
    For a String schema a JSON value that isn't a string (``123``,
    ``true``) is also taken raw, since strings are stored verbatim.
    """
    try:
        value = json.loads(text, parse_constant=_reject_constant)
    except ValueError:
        return text
    if isinstance(schema, StringSchema) and not isinstance(value, str):
        return text
    return value


def _reject_constant(token: str) -> Any:
    raise ValueError(f"Non-standard JSON constant {token}")


def backup_key(key: str, now: Optional[datetime] = None) -> str:
    """Backup record key: ``{key}_{ISO-8601 UTC timestamp}``."""
    now = now or datetime.now(timezone.utc)
    stamp = now.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return f"{key}_{stamp.replace('+00:00', 'Z')}"


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

class Storage:
    """Typed, validated, optionally obfuscated key/value persistence.

    Args:
        store: Where records live.
        broadcast: Change-notification transport. None disables
            publishing and subscribing whatever the config says.
    """

    def __init__(self, store: KeyValueStore, broadcast: Optional[Broadcast] = None) -> None:
        self.store = store
        self.broadcast = broadcast

    def effective_key(self, key: str, config: Optional[StorageConfig] = None) -> str:
        """The key actually used against the store (and as channel name)."""
        config = config or StorageConfig()
        if config.encrypt.key:
            return obfuscate.encode(config.encrypt.phrase, key)
        return key

    # -- load -------------------------------------------------------------

    def load(
        self,
        key: str,
        schema: SchemaNode,
        initial_value: Any,
        config: Optional[StorageConfig] = None,
    ) -> Any:
        """Read, decode and validate the record for key.

        Args:
            key: Logical key.
            schema: Schema the stored value must satisfy.
            initial_value: Returned when the record is missing or unusable.
            config: Options; defaults apply when omitted.

        Returns:
            The validated stored value, or initial_value.

        Raises:
            LoadError: Only when the record is unusable and
                restore_on_error is False.
        """
        config = config or StorageConfig()
        try:
            storage_key = self.effective_key(key, config)
            raw = self.store.get(storage_key)
            if raw is None:
                if config.persist_initial:
                    self.store.set(storage_key, self._encode(initial_value, config))
                    logger.debug("Persisted initial value for '%s'", key)
                return initial_value
            return self._read_value(raw, schema, config)
        except Exception as exc:
            self._report(config, exc, "load", key)
            if not config.restore_on_error:
                raise LoadError(f"Failed to load '{key}': {exc}") from exc
            return initial_value

    # -- update -----------------------------------------------------------

    def update(
        self,
        key: str,
        schema: SchemaNode,
        value: Any,
        config: Optional[StorageConfig] = None,
        current: Any = _MISSING,
    ) -> Any:
        """Validate and persist a new value, then broadcast it.

        Args:
            key: Logical key.
            schema: Schema the new value must satisfy.
            value: The new value, or a function ``old -> new``.
            config: Options; defaults apply when omitted.
            current: The caller's current value. Read from the store
                when omitted.

        Returns:
            The value now current: the validated new value on success,
            ``current`` on failure.
        """
        config = config or StorageConfig()
        if current is _MISSING:
            current = self.load(
                key, schema, None,
                merge_config(config, on_error=None, restore_on_error=True, persist_initial=False),
            )
        _, result = self._apply_update(key, schema, value, config, current)
        return result

    def _apply_update(
        self,
        key: str,
        schema: SchemaNode,
        value: Any,
        config: StorageConfig,
        current: Any,
    ) -> tuple[bool, Any]:
        candidate = _MISSING
        try:
            candidate = value(current) if callable(value) else value
            if config.on_change_before_validation is not None:
                config.on_change_before_validation(current, candidate)

            validated = parse(schema, candidate)

            if config.on_change_after_validation is not None:
                config.on_change_after_validation(current, validated)

            data = self._encode(validated, config)
            storage_key = self.effective_key(key, config)
            self.store.set(storage_key, data)
        except Exception as exc:
            self._report(config, exc, "update", key)
            if config.backup_on_error:
                self._backup_input(key, value, candidate, config)
            return False, current

        if config.use_broadcast_channel and self.broadcast is not None:
            self._publish(storage_key, data, config, key)
        return True, validated

    # -- subscribe --------------------------------------------------------

    def subscribe(
        self,
        key: str,
        schema: SchemaNode,
        config: Optional[StorageConfig],
        on_remote_value: Callable[[Any], Any],
        on_error: Optional[ErrorHandler] = None,
    ) -> Callable[[], None]:
        """Listen for values other writers publish for key.

        Each message goes through the same decode/validate pipeline as
        load(). Valid values go to on_remote_value; failures go to
        on_error (or config.on_error) only, with no restore and no backup.

        Args:
            key: Logical key.
            schema: Schema incoming values must satisfy.
            config: Options; defaults apply when None.
            on_remote_value: Called with each validated remote value.
            on_error: Called with each rejected message's error.

        Returns:
            A function that releases the subscription. Safe to call twice.
        """
        config = config or StorageConfig()
        if not config.use_broadcast_channel or self.broadcast is None:
            return _noop

        channel = self.broadcast.open(self.effective_key(key, config))

        def handle(data: bytes) -> None:
            try:
                value = self._read_value(data, schema, config)
            except Exception as exc:
                self._report(config, exc, "remote update", key, on_error)
                return
            on_remote_value(value)

        channel.on_message(handle)
        logger.debug("Subscribed to '%s' (handle %s)", key, channel.handle_id)
        return channel.close

    # -- backup -----------------------------------------------------------

    def backup(self, key: str, value: Any, config: Optional[StorageConfig] = None) -> Optional[str]:
        """Write a diagnostic snapshot of value under a timestamped key.

        The snapshot is plain JSON (never value-obfuscated); the key is
        obfuscated like the primary key when encrypt.key is set. Nothing
        reads it back.

        Returns:
            The storage key written, or None if the write failed.
        """
        config = config or StorageConfig()
        storage_key = self.effective_key(backup_key(key), config)
        try:
            self.store.set(storage_key, json.dumps(value, default=str).encode("utf-8"))
        except Exception as exc:
            logger.error("Backup of '%s' failed: %s", key, exc)
            return None
        logger.info("Backed up rejected value for '%s'", key)
        return storage_key

    # -- internals --------------------------------------------------------

    def _backup_input(self, key: str, value: Any, candidate: Any, config: StorageConfig) -> None:
        if candidate is not _MISSING:
            self.backup(key, candidate, config)
        elif not callable(value):
            self.backup(key, value, config)
        else:
            logger.debug("Nothing to back up for '%s': updater failed", key)

    def _encode(self, value: Any, config: StorageConfig) -> bytes:
        text = serialize(value)
        if config.encrypt.value:
            text = obfuscate.encode(config.encrypt.phrase, text)
        return text.encode("utf-8")

    def _read_value(self, raw: bytes, schema: SchemaNode, config: StorageConfig) -> Any:
        try:
            text = raw.decode("utf-8")
        except (UnicodeDecodeError, AttributeError) as exc:
            raise DecodeError(f"Payload is not UTF-8 text: {exc}") from exc
        if config.encrypt.value:
            decoded = obfuscate.decode(config.encrypt.phrase, text)
            if text and not decoded:
                logger.log(
                    logging.WARNING if config.debug else logging.DEBUG,
                    "Payload does not decode with the configured phrase",
                )
            text = decoded
        return parse(schema, decode_payload(text, schema))

    def _publish(self, storage_key: str, data: bytes, config: StorageConfig, key: str) -> None:
        try:
            with self.broadcast.open(storage_key) as channel:
                channel.publish(data)
        except Exception as exc:
            self._report(config, exc, "broadcast", key)

    def _report(
        self,
        config: StorageConfig,
        exc: Exception,
        action: str,
        key: str,
        handler: Optional[ErrorHandler] = None,
    ) -> None:
        level = logging.WARNING if config.debug else logging.DEBUG
        kind = "" if isinstance(exc, SuperStorageError) else f" ({type(exc).__name__})"
        logger.log(level, "%s of '%s' failed%s: %s", action.capitalize(), key, kind, exc)

        callback = handler or config.on_error
        if callback is None:
            return
        try:
            callback(exc)
        except Exception as cb_exc:
            logger.error("Error callback raised during %s of '%s': %s", action, key, cb_exc)


def _noop() -> None:
    return None


# ---------------------------------------------------------------------------
# SyncedValue
# ---------------------------------------------------------------------------

class SyncedValue:
    """One live, typed value bound to a key for its whole lifetime.

    Loads on construction, keeps a subscription open so writes from
    other instances land in ``value``, and releases the subscription on
    close(). Use it as a context manager to guarantee the release.

    Args:
        storage: The controller to go through.
        key: Logical key.
        schema: Schema for the value.
        initial_value: Fallback when nothing valid is stored.
        config: Options; defaults apply when omitted.
        on_change: Called with every new value, local or remote.
    """

    def __init__(
        self,
        storage: Storage,
        key: str,
        schema: SchemaNode,
        initial_value: Any,
        config: Optional[StorageConfig] = None,
        on_change: Optional[Callable[[Any], Any]] = None,
    ) -> None:
        self.storage = storage
        self.state = ValueState.UNINITIALIZED
        self._initial = initial_value
        self._value = initial_value
        self._listeners: list[Callable[[Any], Any]] = [on_change] if on_change else []
        self._unsubscribe: Callable[[], None] = _noop
        self._updating = False
        self._bind(key, schema, config or StorageConfig())

    @property
    def value(self) -> Any:
        return self._value

    @property
    def closed(self) -> bool:
        return self.state == ValueState.CLOSED

    def set(self, value: Any) -> bool:
        """Validate, persist and broadcast a new value (or ``old -> new``).

        Returns:
            True if the value was accepted.
        """
        if self.closed:
            raise SuperStorageError(f"SyncedValue for '{self.key}' is closed")
        self._updating = True
        try:
            ok, self._value = self.storage._apply_update(
                self.key, self.schema, value, self.config, self._value
            )
        finally:
            self._updating = False
        if ok:
            self.state = ValueState.UPDATED
            self._notify()
        return ok

    def refresh(self) -> Any:
        """Re-read the store, keeping the current value if the record is unusable."""
        self._value = self.storage.load(
            self.key, self.schema, self._value,
            merge_config(self.config, restore_on_error=True, persist_initial=False),
        )
        self.state = ValueState.LOADED
        return self._value

    def watch(self, callback: Callable[[Any], Any]) -> Callable[[], None]:
        """Register a change callback. Returns a function that removes it."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def rebind(
        self,
        key: Optional[str] = None,
        schema: Optional[SchemaNode] = None,
        config: Optional[StorageConfig] = None,
    ) -> Any:
        """Switch to a different key, schema or config.

        The old subscription is released before the new one is opened.

        Returns:
            The value loaded for the new binding.
        """
        try:
            self._unsubscribe()
        finally:
            self._unsubscribe = _noop
        self._bind(key or self.key, schema or self.schema, config or self.config)
        return self._value

    def close(self) -> None:
        """Release the subscription. Safe to call more than once."""
        try:
            self._unsubscribe()
        finally:
            self._unsubscribe = _noop
            self.state = ValueState.CLOSED

    def _bind(self, key: str, schema: SchemaNode, config: StorageConfig) -> None:
        self.key = key
        self.schema = schema
        self.config = config
        self._value = self.storage.load(key, schema, self._initial, config)
        self.state = ValueState.LOADED
        self._unsubscribe = self.storage.subscribe(key, schema, config, self._on_remote)

    def _on_remote(self, value: Any) -> None:
        # Our own publishes echo back on our subscription handle.
        if self.closed or self._updating or value == self._value:
            return
        self._value = value
        self.state = ValueState.REMOTE_UPDATED
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._value)
            except Exception as exc:
                logger.error("Change listener for '%s' raised: %s", self.key, exc)

    def __enter__(self) -> "SyncedValue":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"SyncedValue(key={self.key!r}, state={self.state.value}, value={self._value!r})"
