from __future__ import annotations

import asyncio
import logging
from typing import Optional

from common.streams import start_with
from state.container import StateContainer
from state.models import CasPolicy, EntryStore

from .loader import hydrate
from .options import DEFAULT_DEBOUNCE_MS, DEFAULT_PREFIX, DistinctPolicy, SyncOptions
from .persister import run_persister
from .subscription import PersistSubscription


logger = logging.getLogger(__name__)


async def _load_then_persist(
    store: EntryStore,
    container: StateContainer,
    options: SyncOptions,
    subscription: PersistSubscription,
) -> None:
    durable = await hydrate(store, container, options.prefix)
    if subscription.unsubscribed:
        return

    # No await between reading the hydrated value and subscribing, so no
    # update can fall between the two.
    source = container.subscribe()
    subscription._attach(source)
    current = container.get_value()
    subscription._mark_ready()
    logger.info("hydration of %r complete; persisting under prefix %r", container.name, options.prefix)

    # Pairing starts from what storage already holds. The hydrated value is
    # offered as the first snapshot: if it only contains what was loaded it is
    # filtered out as unchanged, otherwise (keys the container started with,
    # updates made while loading) it is persisted.
    await run_persister(store, start_with(source, current), durable, options, subscription)


def load_then_persist(
    store: EntryStore,
    container: StateContainer,
    *,
    prefix: Optional[str] = DEFAULT_PREFIX,
    debounce_ms: Optional[float] = DEFAULT_DEBOUNCE_MS,
    cas: Optional[CasPolicy] = None,
    distinct: Optional[DistinctPolicy] = None,
) -> PersistSubscription:
    """Hydrate `container` from `store`, then keep persisting it.

    The persister only subscribes once every entry under `prefix` has been
    applied, so hydration updates are never mistaken for mutations. A load
    failure ends the returned subscription with `StoreReadError` before any
    write is attempted.

    Must be called from inside a running event loop. Invalid options raise
    `MisuseError` right away.
    """
    options = SyncOptions.build(prefix=prefix, debounce_ms=debounce_ms, cas=cas, distinct=distinct)
    asyncio.get_running_loop()

    subscription = PersistSubscription(name=container.name)
    subscription._start(_load_then_persist(store, container, options, subscription))
    return subscription
