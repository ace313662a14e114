"""
Composite key encoding for prefixed state entries.

A composite key ``(prefix, subkey)`` is stored as ``prefix + SEPARATOR +
subkey``. Because the separator sorts below every other character, all
entries of one prefix are contiguous and ordered by subkey, and no other
prefix (not even one that extends this prefix) falls between them.

The range of a prefix is ``[prefix + SEPARATOR, prefix + RANGE_END)``, where
``RANGE_END`` is the character right after the separator: the exclusive
"one past the namespace" bound. Any string subkey fits inside it; the only
constraint is that a prefix must not contain the separator.
"""

from __future__ import annotations

from typing import Optional, Tuple

from .errors import KeyEncodingError, MisuseError


SEPARATOR = "\x00"
RANGE_END = chr(ord(SEPARATOR) + 1)


def validate_prefix(prefix: Optional[str]) -> Optional[str]:
    if prefix is None:
        return None
    if not isinstance(prefix, str):
        raise MisuseError(f"prefix must be a string or None, got {type(prefix).__name__}")
    if SEPARATOR in prefix:
        raise MisuseError("prefix must not contain the NUL separator")
    return prefix


def encode_key(prefix: Optional[str], subkey: str) -> str:
    """Return the store key for `subkey`; raw subkey when `prefix` is None."""
    if not isinstance(subkey, str):
        raise KeyEncodingError(f"state keys must be strings, got {type(subkey).__name__}")
    if prefix is None:
        return subkey
    return f"{prefix}{SEPARATOR}{subkey}"


def decode_key(prefix: Optional[str], key: str) -> str:
    if prefix is None:
        return key
    head = prefix + SEPARATOR
    if not key.startswith(head):
        raise KeyEncodingError(f"key {key!r} is not under prefix {prefix!r}")
    return key[len(head):]


def prefix_range(prefix: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(gte, lt)`` bounds for a scan; ``(None, None)`` is the whole keyspace."""
    if prefix is None:
        return (None, None)
    return (prefix + SEPARATOR, prefix + RANGE_END)
