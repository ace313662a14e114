from __future__ import annotations

import json
from typing import Any


def dump_value(value: Any) -> bytes:
    # Deterministic JSON: stable key order, no extra whitespace
    return json.dumps(value, separators=(",", ":"), sort_keys=True, allow_nan=False).encode("utf-8")


def load_value(data: bytes) -> Any:
    return json.loads(data.decode("utf-8"))


def copy_value(value: Any) -> Any:
    """Detached JSON copy of `value`; raises TypeError/ValueError for non-JSON input."""
    return load_value(dump_value(value))
