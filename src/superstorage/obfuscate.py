"""
Obfuscation codec -- reversible, passphrase-keyed string transform.

NOT encryption. The key is the sum of the phrase's code points, so
it offers casual confidentiality only: anyone with the source can
brute-force 65536 keys in milliseconds. Use it to keep values from
being readable at a glance in a storage dump, nothing more.

Wire format:
    base64( xor_each_utf16_unit( "ss1:" + plaintext, derive_key(phrase) ) )

The "ss1:" salt marker lets decode() tell a wrong phrase from a right
one. A mismatch, bad base64, or an odd byte count all fail closed to
an empty string rather than raising.

Usage:
    token = encode("my-phrase", "hello")
    decode("my-phrase", token)      # "hello"
    decode("other", token)          # ""
"""

from __future__ import annotations

import base64
import binascii
import logging

from .errors import ObfuscationDecodeError

logger = logging.getLogger("superstorage.obfuscate")

SALT_MARKER = "ss1:"
_CODEC = "utf-16-be"


def derive_key(phrase: str) -> int:
    """Sum the phrase's code points and fold the result to 16 bits.

    Args:
        phrase: The passphrase.

    Returns:
        Integer XOR key in the range 0..65535.
    """
    return sum(ord(ch) for ch in phrase) & 0xFFFF


def _xor_units(data: bytes, key: int) -> bytes:
    """XOR every big-endian 16-bit unit of data with key."""
    hi, lo = key >> 8, key & 0xFF
    out = bytearray(data)
    for i in range(0, len(out), 2):
        out[i] ^= hi
        out[i + 1] ^= lo
    return bytes(out)


def encode(phrase: str, plaintext: str) -> str:
    """Obfuscate plaintext with phrase.

    Args:
        phrase: The passphrase.
        plaintext: Text to obfuscate.

    Returns:
        Base64 ciphertext, or "" for empty plaintext.
    """
    if not plaintext:
        return ""
    raw = (SALT_MARKER + plaintext).encode(_CODEC, errors="surrogatepass")
    return base64.b64encode(_xor_units(raw, derive_key(phrase))).decode("ascii")


def decode(phrase: str, ciphertext: str, strict: bool = False) -> str:
    """Reverse encode().

    Args:
        phrase: The passphrase used to encode.
        ciphertext: Base64 text produced by encode().
        strict: Raise ObfuscationDecodeError instead of returning "".

    Returns:
        The original plaintext, or "" when ciphertext is unreadable
        or was produced with a different phrase.
    """
    try:
        return _decode(phrase, ciphertext)
    except ObfuscationDecodeError as exc:
        if strict:
            raise
        logger.debug("Obfuscated payload rejected: %s", exc)
        return ""


def _decode(phrase: str, ciphertext: str) -> str:
    if not ciphertext:
        return ""
    try:
        raw = base64.b64decode(ciphertext, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ObfuscationDecodeError(f"Not valid base64: {exc}") from exc

    if len(raw) % 2:
        raise ObfuscationDecodeError("Odd byte count, not an obfuscated payload")

    try:
        text = _xor_units(raw, derive_key(phrase)).decode(_CODEC, errors="surrogatepass")
    except UnicodeDecodeError as exc:
        raise ObfuscationDecodeError("Wrong phrase or corrupted payload") from exc

    if not text.startswith(SALT_MARKER):
        raise ObfuscationDecodeError("Salt marker mismatch (wrong phrase?)")
    return text[len(SALT_MARKER):]
