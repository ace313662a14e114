from __future__ import annotations

from typing import Optional

from state.container import StateContainer
from state.models import EntryStore

from .options import SyncOptions
from .orchestrator import load_then_persist
from .subscription import PersistSubscription


def start_from_env(
    container: StateContainer,
    *,
    store: Optional[EntryStore] = None,
    options: Optional[SyncOptions] = None,
) -> PersistSubscription:
    """Start `load_then_persist` with settings taken from the environment.

    Options come from `SyncOptions.from_env()` and the store from
    `S3EntryStore.from_env()` unless given explicitly.
    """
    options = options or SyncOptions.from_env()
    if store is None:
        # boto3 is only needed when the S3 store is actually used
        from state.s3_store import S3EntryStore

        store = S3EntryStore.from_env()
    return load_then_persist(
        store,
        container,
        prefix=options.prefix,
        debounce_ms=options.debounce_ms,
        cas=options.cas,
        distinct=options.distinct,
    )
