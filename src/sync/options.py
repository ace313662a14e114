from __future__ import annotations

import os
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from common.equality import deep_equal
from common.errors import MisuseError
from common.keys import validate_prefix
from state.models import CasPolicy, Entry, State


# Environment variable names for convenience configuration
ENV_PREFIX = "STATE_SYNC_PREFIX"
ENV_DEBOUNCE_MS = "STATE_SYNC_DEBOUNCE_MS"

DEFAULT_PREFIX = "state"
DEFAULT_DEBOUNCE_MS = 1000.0

# (previous snapshot, current snapshot) -> unchanged?
DistinctPolicy = Callable[[State, State], bool]


def default_cas(previous: Entry, candidate: Entry) -> bool:
    """Allow the write only if the stored (key, value) differs from the candidate's."""
    return not deep_equal((previous.key, previous.value), (candidate.key, candidate.value))


def default_distinct(previous: State, current: State) -> bool:
    return deep_equal(previous, current)


class SyncOptions(BaseModel):
    """
    Settings shared by the loader, the persister and the orchestrator.

    Fields
    - prefix: composite-key namespace; `None` stores raw keys and scans the
      whole keyspace.
    - debounce_ms: quiet period before the latest snapshot is persisted.
    - cas: per-key write guard, `cas(previous_entry, candidate_entry)`.
    - distinct: snapshot filter, `distinct(previous, current)`; a true
      result means "nothing changed" and the snapshot is skipped.

    The two policies are independent: replacing one keeps the other's default.
    """

    model_config = ConfigDict(frozen=True)

    prefix: Optional[str] = DEFAULT_PREFIX
    debounce_ms: float = Field(default=DEFAULT_DEBOUNCE_MS, ge=0)
    cas: CasPolicy = default_cas
    distinct: DistinctPolicy = default_distinct

    @field_validator("prefix")
    @classmethod
    def _check_prefix(cls, v: Optional[str]) -> Optional[str]:
        return validate_prefix(v)

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000.0

    @classmethod
    def build(cls, **kwargs: Any) -> "SyncOptions":
        """Validate options, treating `None` policies/debounce as "use the default".

        Raises `MisuseError` instead of pydantic's `ValidationError`.
        """
        values = {k: v for k, v in kwargs.items() if k == "prefix" or v is not None}
        try:
            return cls(**values)
        except ValidationError as ve:
            raise MisuseError(f"Invalid sync options: {ve}") from ve

    @classmethod
    def from_env(cls, **overrides: Any) -> "SyncOptions":
        """Read `STATE_SYNC_PREFIX` ("none" disables prefixing) and `STATE_SYNC_DEBOUNCE_MS`."""
        values: dict[str, Any] = {}
        prefix = os.environ.get(ENV_PREFIX)
        if prefix not in (None, ""):
            values["prefix"] = None if prefix.lower() == "none" else prefix
        debounce = os.environ.get(ENV_DEBOUNCE_MS)
        if debounce not in (None, ""):
            values["debounce_ms"] = debounce
        values.update(overrides)
        return cls.build(**values)
