from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Dict, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field


State = Dict[str, Any]


class Entry(BaseModel):
    """
    One durable record: a store key, its JSON value and its sequence number.

    Fields
    - key: the store key. Either the raw state key, or the encoded composite
      key `prefix + "\\x00" + subkey` (see `common.keys`).
    - value: any JSON-compatible value (decoded copy, never shared with the
      in-memory state).
    - seq: sequence number assigned by the store on the accepted write that
      produced this record. `None` for a candidate entry that has not been
      written yet.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    value: Any = None
    seq: Optional[int] = Field(default=None, description="Store-assigned sequence number")


# (previous stored entry, candidate entry) -> write allowed?
CasPolicy = Callable[[Entry, Entry], bool]


class EntryStore(Protocol):
    """Capability surface the sync pipeline needs from a durable store."""

    def range_scan(
        self, gte: Optional[str] = None, lt: Optional[str] = None
    ) -> AsyncIterator[Entry]:
        """Entries with `gte <= key < lt` in key order; open bounds when None."""
        ...

    async def get(self, key: str) -> Optional[Entry]:
        ...

    async def put(self, key: str, value: Any, *, cas: Optional[CasPolicy] = None) -> int:
        """Write `value` unless `cas(previous, candidate)` vetoes it; return the key's seq."""
        ...
