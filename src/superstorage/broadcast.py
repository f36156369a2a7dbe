"""
Change broadcast -- same-device publish/subscribe per storage key.

A Broadcast hands out Channel handles by name (the effective storage
key). Every publish on a handle reaches every *other* open handle
with the same name, at most once each, in no guaranteed order.

The controller uses handles two ways, on purpose:
    publishing   open -> publish -> close   (a disposable handle per write)
    subscribing  open -> on_message -> ... -> close on teardown

Transports:
    LocalBroadcast: In-process. Delivery goes through a pluggable
        dispatcher (inline by default; pass loop.call_soon or a queue
        for deferred delivery).
    FileBroadcast: Cross-process on one machine. Publishers drop
        message files into a per-channel directory; handles poll().

Storage layout (FileBroadcast):
    <root>/
    ├── <sha256(name)>/            # one directory per channel name
    │   ├── msg-<id>.json
    │   └── ...
    └── ...

Usage:
    hub = LocalBroadcast()
    listener = hub.open("user")
    listener.on_message(lambda data: print(data))
    with hub.open("user") as sender:
        sender.publish(b'{"name":"Eve"}')
    listener.close()
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from functools import partial
from pathlib import Path
from typing import Callable, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .errors import ChannelClosedError

logger = logging.getLogger("superstorage.broadcast")

MessageHandler = Callable[[bytes], None]


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

class Channel(ABC):
    """A handle on one named broadcast channel."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.handle_id = uuid.uuid4().hex[:12]
        self._handlers: list[MessageHandler] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @abstractmethod
    def publish(self, data: bytes) -> None:
        """Send data to every other open handle on this channel.

        Raises:
            ChannelClosedError: If this handle was closed.
        """

    def on_message(self, handler: MessageHandler) -> None:
        """Register a handler called with each received payload."""
        self._handlers.append(handler)

    def close(self) -> None:
        """Release the handle. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._handlers.clear()
        self._release()

    def _release(self) -> None:
        """Transport-specific cleanup, run once on close()."""

    def _check_open(self) -> None:
        if self._closed:
            raise ChannelClosedError(f"Channel handle {self.handle_id} is closed")

    def _receive(self, data: bytes) -> None:
        """Hand data to every handler; handler errors are logged, not raised."""
        if self._closed:
            return
        for handler in list(self._handlers):
            try:
                handler(data)
            except Exception as exc:
                logger.error(
                    "Message handler error on channel handle %s: %s",
                    self.handle_id, exc,
                )

    def __enter__(self) -> "Channel":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Broadcast(ABC):
    """Factory for channel handles."""

    @abstractmethod
    def open(self, name: str) -> Channel:
        """Open a new handle on the channel called name."""


# ---------------------------------------------------------------------------
# In-process transport
# ---------------------------------------------------------------------------

class _LocalChannel(Channel):
    def __init__(self, hub: "LocalBroadcast", name: str) -> None:
        super().__init__(name)
        self._hub = hub

    def publish(self, data: bytes) -> None:
        self._check_open()
        self._hub._deliver(self, bytes(data))

    def _release(self) -> None:
        self._hub._forget(self)


class LocalBroadcast(Broadcast):
    """In-process broadcast hub.

    Args:
        dispatch: Called with a zero-argument callable for every
            delivery. Defaults to calling it immediately.
    """

    def __init__(self, dispatch: Optional[Callable[[Callable[[], None]], None]] = None) -> None:
        self._channels: dict[str, list[_LocalChannel]] = {}
        self._dispatch = dispatch or _call_now

    def open(self, name: str) -> Channel:
        channel = _LocalChannel(self, name)
        self._channels.setdefault(name, []).append(channel)
        return channel

    def open_handles(self, name: str) -> int:
        """Number of handles currently open on name."""
        return len(self._channels.get(name, []))

    def _deliver(self, sender: _LocalChannel, data: bytes) -> None:
        receivers = [c for c in self._channels.get(sender.name, []) if c is not sender]
        for channel in receivers:
            self._dispatch(partial(channel._receive, data))
        logger.debug("Delivered %d bytes to %d handle(s)", len(data), len(receivers))

    def _forget(self, channel: _LocalChannel) -> None:
        handles = self._channels.get(channel.name, [])
        if channel in handles:
            handles.remove(channel)
        if not handles:
            self._channels.pop(channel.name, None)


def _call_now(fn: Callable[[], None]) -> None:
    fn()


# ---------------------------------------------------------------------------
# File transport
# ---------------------------------------------------------------------------

class BroadcastMessage(BaseModel):
    """One published payload, as written to disk."""

    message_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    channel: str
    sender: str
    payload: str = Field(description="Base64 of the raw payload bytes")
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    ttl_seconds: int = 3600

    @property
    def is_expired(self) -> bool:
        expires = self.published_at + timedelta(seconds=self.ttl_seconds)
        return datetime.now(timezone.utc) > expires

    @property
    def data(self) -> bytes:
        return base64.b64decode(self.payload)


class _FileChannel(Channel):
    def __init__(self, hub: "FileBroadcast", name: str) -> None:
        super().__init__(name)
        self._hub = hub
        self._opened_at = datetime.now(timezone.utc)
        self._seen: set[str] = set()

    def publish(self, data: bytes) -> None:
        self._check_open()
        self._hub._write(self, bytes(data))

    def poll(self) -> int:
        """Deliver messages that arrived since the last poll.

        Returns:
            Number of messages delivered.
        """
        if self._closed:
            return 0

        messages = self._hub._read(self.name)
        self._seen &= {m.message_id for m in messages}

        delivered = 0
        for msg in messages:
            if msg.message_id in self._seen:
                continue
            self._seen.add(msg.message_id)
            if msg.sender == self.handle_id or msg.published_at < self._opened_at:
                continue
            self._receive(msg.data)
            delivered += 1
        return delivered

    def _release(self) -> None:
        self._hub._forget(self)


class FileBroadcast(Broadcast):
    """Directory-backed broadcast shared by every process on the machine.

    Args:
        root: Directory holding channel directories.
        ttl_seconds: How long a message stays deliverable.
        max_channel_messages: Messages kept per channel before pruning.
    """

    def __init__(
        self,
        root: Path,
        ttl_seconds: int = 3600,
        max_channel_messages: int = 200,
    ) -> None:
        self.root = Path(root).expanduser()
        self._ttl = ttl_seconds
        self._max_messages = max_channel_messages
        self._open: list[_FileChannel] = []

    def open(self, name: str) -> _FileChannel:
        channel = _FileChannel(self, name)
        self._open.append(channel)
        return channel

    def poll(self) -> int:
        """Poll every open handle. Returns total messages delivered."""
        return sum(channel.poll() for channel in list(self._open))

    def _channel_dir(self, name: str) -> Path:
        return self.root / hashlib.sha256(name.encode("utf-8")).hexdigest()

    def _write(self, sender: _FileChannel, data: bytes) -> None:
        msg = BroadcastMessage(
            channel=sender.name,
            sender=sender.handle_id,
            payload=base64.b64encode(data).decode("ascii"),
            ttl_seconds=self._ttl,
        )

        channel_dir = self._channel_dir(sender.name)
        channel_dir.mkdir(parents=True, exist_ok=True)

        filename = f"msg-{msg.message_id}.json"
        tmp_path = channel_dir / f".{filename}.tmp"
        tmp_path.write_text(msg.model_dump_json(), encoding="utf-8")
        tmp_path.rename(channel_dir / filename)

        self._prune(channel_dir)
        logger.debug("Published %s on channel dir %s", msg.message_id, channel_dir.name)

    def _read(self, name: str) -> list[BroadcastMessage]:
        channel_dir = self._channel_dir(name)
        if not channel_dir.is_dir():
            return []

        messages: list[BroadcastMessage] = []
        for msg_file in channel_dir.glob("msg-*.json"):
            try:
                msg = BroadcastMessage.model_validate_json(msg_file.read_text(encoding="utf-8"))
            except FileNotFoundError:
                continue
            except (OSError, PydanticValidationError) as exc:
                logger.warning("Skipping invalid message %s: %s", msg_file.name, exc)
                continue
            if msg.channel == name and not msg.is_expired:
                messages.append(msg)

        messages.sort(key=lambda m: m.published_at)
        return messages

    def _prune(self, channel_dir: Path) -> None:
        """Drop expired messages, then the oldest beyond the per-channel cap."""
        live: list[tuple[datetime, Path]] = []
        for msg_file in channel_dir.glob("msg-*.json"):
            try:
                msg = BroadcastMessage.model_validate_json(msg_file.read_text(encoding="utf-8"))
            except (OSError, PydanticValidationError):
                continue
            if msg.is_expired:
                msg_file.unlink(missing_ok=True)
            else:
                live.append((msg.published_at, msg_file))

        live.sort(key=lambda pair: pair[0])
        excess = len(live) - self._max_messages
        for _, msg_file in live[:max(excess, 0)]:
            msg_file.unlink(missing_ok=True)
        if excess > 0:
            logger.debug("Pruned %d old messages from %s", excess, channel_dir.name)

    def _forget(self, channel: _FileChannel) -> None:
        if channel in self._open:
            self._open.remove(channel)
