from __future__ import annotations

import logging
from typing import Optional

from common.errors import StoreError, StoreReadError
from common.keys import decode_key, prefix_range, validate_prefix
from state.container import StateContainer, set_prop
from state.models import EntryStore, State

from .options import DEFAULT_PREFIX


logger = logging.getLogger(__name__)


async def hydrate(store: EntryStore, container: StateContainer, prefix: Optional[str]) -> State:
    """Merge every entry under `prefix` into `container`; return what was loaded.

    Entries are applied one update at a time, in the store's key order.
    Missing entries and `None` values are skipped. Keys already in the
    container but absent from the store are left as they are.
    """
    prefix = validate_prefix(prefix)
    gte, lt = prefix_range(prefix)
    loaded: State = {}

    entries = store.range_scan(gte, lt).__aiter__()
    while True:
        try:
            entry = await entries.__anext__()
        except StopAsyncIteration:
            break
        except StoreError:
            raise
        except Exception as ex:
            raise StoreReadError(f"Range scan for prefix {prefix!r} failed") from ex

        if entry is None or entry.value is None:
            continue
        subkey = decode_key(prefix, entry.key)
        container.update(set_prop(subkey, entry.value))
        loaded[subkey] = entry.value
        logger.debug("hydrated %r (seq %s)", subkey, entry.seq)

    logger.info("hydrated %d key(s) into %r from prefix %r", len(loaded), container.name, prefix)
    return loaded


async def load_state(
    store: EntryStore, container: StateContainer, prefix: Optional[str] = DEFAULT_PREFIX
) -> StateContainer:
    """Hydrate `container` from the entries stored under `prefix` and return it.

    Resolves only once the scan is exhausted. Any read failure propagates as
    `StoreReadError`; entries applied before the failure stay applied.
    """
    await hydrate(store, container, prefix)
    return container
