from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Tuple

from .errors import MisuseError


# Closed set of value kinds; every JSON-like value falls into exactly one.
NULL = "null"
BOOL = "bool"
NUMBER = "number"
STRING = "string"
ARRAY = "array"
MAP = "map"
OTHER = "other"


def kind_of(value: Any) -> str:
    # bool before number: True must not compare equal to 1
    if value is None:
        return NULL
    if isinstance(value, bool):
        return BOOL
    if isinstance(value, (int, float)):
        return NUMBER
    if isinstance(value, str):
        return STRING
    if isinstance(value, Mapping):
        return MAP
    if isinstance(value, (list, tuple)):
        return ARRAY
    return OTHER


def _unpack(values: Tuple[Any, ...]) -> Tuple[Any, Any]:
    if len(values) == 2:
        return values[0], values[1]
    if len(values) == 1 and isinstance(values[0], (list, tuple)) and len(values[0]) == 2:
        return values[0][0], values[0][1]
    raise MisuseError("Can only deep_equal two values at a time.")


def _equal(a: Any, b: Any) -> bool:
    if a is b:
        return True

    ka, kb = kind_of(a), kind_of(b)
    if ka != kb:
        return False
    if ka in (ARRAY, MAP):
        if len(a) != len(b):
            return False
        if ka == ARRAY:
            return all(_equal(x, y) for x, y in zip(a, b))
        for key in a:
            if key not in b or not _equal(a[key], b[key]):
                return False
        return True
    return a == b


def deep_equal(*values: Any) -> bool:
    """Structural equality over JSON-like values.

    Accepts either two values, ``deep_equal(a, b)``, or a single pair,
    ``deep_equal((a, b))``. Mappings compare by key set (order-independent),
    sequences element-wise; a mapping never equals a sequence and a bool never
    equals a number.

    Inputs must be acyclic: a self-referencing structure recurses until
    Python raises ``RecursionError``.
    """
    a, b = _unpack(values)
    return _equal(a, b)


def not_deep_equal(*values: Any) -> bool:
    return not deep_equal(*values)
