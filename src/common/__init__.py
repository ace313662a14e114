"""
Common utilities for kv-state-sync.

Modules:
- equality: structural equality over JSON-like values
- streams: async stream transforms (pairwise with seed, debounce)
- keys: composite key encoding and prefix ranges
- errors: store and misuse error types
"""

__all__ = [
    "equality",
    "errors",
    "keys",
    "streams",
]
