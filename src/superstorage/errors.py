"""
Error taxonomy for superstorage.

Every failure the controller can observe maps onto one of these.
None of them cross the public load/update/subscribe contract during
steady state: the controller funnels them into the caller's error
callback. They are still ordinary exceptions so the lower layers
(schema, store, codec) can be used and tested on their own.
"""

from __future__ import annotations

from typing import Any, Optional


class SuperStorageError(Exception):
    """Base class for every superstorage error."""


class ValidationError(SuperStorageError):
    """A schema constraint was violated.

    Args:
        message: Human-readable description of the violated constraint.
        constraint: Short constraint name ("type", "required", "min", "max").
        value: The offending input value.
        path: Field names / indices leading from the root value to the failure.
    """

    def __init__(
        self,
        message: str,
        constraint: str = "type",
        value: Any = None,
        path: tuple = (),
    ) -> None:
        self.message = message
        self.constraint = constraint
        self.value = value
        self.path = tuple(path)
        super().__init__(str(self))

    def __str__(self) -> str:
        if not self.path:
            return self.message
        dotted = ".".join(str(p) for p in self.path)
        return f"{dotted}: {self.message}"

    def at(self, segment: Any) -> "ValidationError":
        """Return a copy of this error nested one level deeper."""
        return ValidationError(
            self.message,
            constraint=self.constraint,
            value=self.value,
            path=(segment, *self.path),
        )


class DecodeError(SuperStorageError):
    """A stored or broadcast payload could not be read."""


class ObfuscationDecodeError(DecodeError):
    """Obfuscated text was not valid base64, or the phrase was wrong."""


class StoreError(SuperStorageError):
    """The underlying byte store failed to read or write.

    Args:
        message: What went wrong.
        key: The storage key involved, if any.
    """

    def __init__(self, message: str, key: Optional[str] = None) -> None:
        self.key = key
        super().__init__(message)


class LoadError(SuperStorageError):
    """Initial load failed and restore-on-error was disabled."""


class ChannelClosedError(SuperStorageError):
    """A publish was attempted on a closed channel handle."""
