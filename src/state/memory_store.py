from __future__ import annotations

import asyncio
import bisect
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from common.errors import StoreReadError, StoreWriteError

from .codec import copy_value
from .models import CasPolicy, Entry


logger = logging.getLogger(__name__)


class MemoryStore:
    """
    In-process ordered, versioned key-value store.

    - Keys are kept sorted (code-point order, which equals UTF-8 byte order).
    - Every accepted write appends to a single log and takes the next global
      sequence number. Sequence 0 is the log header, so the first write gets
      seq 1. A key's seq therefore only grows, and only when it is written.
    - `put(..., cas=fn)` consults `fn(previous, candidate)` when the key
      already exists; a falsy result leaves the stored entry (and its seq)
      untouched.
    - Values are stored as detached JSON copies; non-JSON values fail with
      `StoreWriteError`.
    - Reads and writes yield to the event loop once, like a real store would.
    """

    def __init__(self) -> None:
        self._keys: List[str] = []
        self._entries: Dict[str, Entry] = {}
        self._log: List[Entry] = []
        self._seq = 0
        self._closed = False

    @property
    def version(self) -> int:
        """Sequence number of the latest accepted write (0 when empty)."""
        return self._seq

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        self._closed = True

    def _check_readable(self) -> None:
        if self._closed:
            raise StoreReadError("store is closed")

    # -------- Reads --------
    async def get(self, key: str) -> Optional[Entry]:
        self._check_readable()
        await asyncio.sleep(0)
        entry = self._entries.get(key)
        return None if entry is None else _detached(entry)

    async def range_scan(self, gte: Optional[str] = None, lt: Optional[str] = None) -> AsyncIterator[Entry]:
        """Yield entries with `gte <= key < lt` in key order.

        The scan re-positions after every entry, so keys inserted behind the
        cursor are skipped and keys inserted ahead of it are picked up.
        """
        self._check_readable()
        idx = 0 if gte is None else bisect.bisect_left(self._keys, gte)
        while True:
            await asyncio.sleep(0)
            self._check_readable()
            if idx >= len(self._keys):
                return
            key = self._keys[idx]
            if lt is not None and key >= lt:
                return
            yield _detached(self._entries[key])
            idx = bisect.bisect_right(self._keys, key)

    async def history(self, key: Optional[str] = None) -> List[Entry]:
        """Accepted writes in log order, optionally only those for `key`."""
        self._check_readable()
        return [_detached(e) for e in self._log if key is None or e.key == key]

    # -------- Writes --------
    async def put(self, key: str, value: Any, *, cas: Optional[CasPolicy] = None) -> int:
        if self._closed:
            raise StoreWriteError("store is closed")
        if not isinstance(key, str):
            raise StoreWriteError(f"store keys must be strings, got {type(key).__name__}")
        try:
            stored_value = copy_value(value)
        except (TypeError, ValueError) as ex:
            raise StoreWriteError(f"value for {key!r} is not JSON-serialisable") from ex

        await asyncio.sleep(0)

        previous = self._entries.get(key)
        if previous is not None and cas is not None:
            candidate = Entry(key=key, value=stored_value)
            if not cas(previous, candidate):
                logger.debug("cas rejected write to %r (seq stays %s)", key, previous.seq)
                return previous.seq

        self._seq += 1
        entry = Entry(key=key, value=stored_value, seq=self._seq)
        if previous is None:
            bisect.insort(self._keys, key)
        self._entries[key] = entry
        self._log.append(entry)
        return entry.seq


def _detached(entry: Entry) -> Entry:
    # Readers get their own copy of the value so they cannot alter the stored one
    return entry.model_copy(update={"value": copy_value(entry.value)})
