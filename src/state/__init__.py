"""
In-memory state container and durable entry stores.

`StateContainer` is the observable mapping the application mutates;
`MemoryStore` and `S3EntryStore` are the durable, ordered, versioned stores
the sync pipeline reads from and writes to.
"""

from .container import StateContainer, add_entities, set_prop, set_props
from .memory_store import MemoryStore
from .models import Entry, EntryStore, State

__all__ = [
    "Entry",
    "EntryStore",
    "MemoryStore",
    "State",
    "StateContainer",
    "add_entities",
    "set_prop",
    "set_props",
]
