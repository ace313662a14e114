"""
Load/persist pipeline between a `StateContainer` and a durable entry store.

- `load_state`: one-shot hydration from a prefix range.
- `persist_state`: debounced, CAS-guarded persistence of container changes.
- `load_then_persist`: hydration strictly followed by persistence.
"""

from .loader import load_state
from .options import SyncOptions, default_cas, default_distinct
from .orchestrator import load_then_persist
from .persister import persist_state
from .subscription import PersistSubscription

__all__ = [
    "PersistSubscription",
    "SyncOptions",
    "default_cas",
    "default_distinct",
    "load_state",
    "load_then_persist",
    "persist_state",
]
