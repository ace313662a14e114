from __future__ import annotations

import asyncio
import logging
from contextlib import aclosing
from typing import AsyncIterator, Optional

from common.errors import MisuseError, StoreError, StoreWriteError
from common.keys import encode_key
from common.streams import debounce, pairwise_start_with
from state.container import StateContainer
from state.models import CasPolicy, EntryStore, State

from .options import DEFAULT_DEBOUNCE_MS, DEFAULT_PREFIX, DistinctPolicy, SyncOptions
from .subscription import PersistSubscription


logger = logging.getLogger(__name__)


async def write_snapshot(
    store: EntryStore,
    snapshot: State,
    options: SyncOptions,
    subscription: Optional[PersistSubscription] = None,
) -> int:
    """Write every top-level key of `snapshot`, one awaited put at a time.

    Stops before the next key once `subscription` is unsubscribed. A failing
    put aborts the rest of the snapshot. Returns the number of puts issued.
    """
    issued = 0
    for key, value in snapshot.items():
        if subscription is not None and subscription.unsubscribed:
            break
        store_key = encode_key(options.prefix, key)
        try:
            seq = await store.put(store_key, value, cas=options.cas)
        except (StoreError, MisuseError):
            raise
        except Exception as ex:
            raise StoreWriteError(f"Write of {key!r} failed") from ex
        issued += 1
        if subscription is not None:
            subscription.writes_issued += 1
        logger.debug("put %r -> seq %s", key, seq)
    return issued


async def run_persister(
    store: EntryStore,
    snapshots: AsyncIterator[State],
    seed: State,
    options: SyncOptions,
    subscription: PersistSubscription,
) -> None:
    """Debounce `snapshots`, pair them starting from `seed`, and persist the changes.

    One snapshot is written completely before the next one is looked at.
    """
    async with aclosing(debounce(snapshots, options.debounce_seconds)) as coalesced:
        async with aclosing(pairwise_start_with(coalesced, seed)) as pairs:
            async for previous, current in pairs:
                if subscription.unsubscribed:
                    break
                if options.distinct(previous, current):
                    logger.debug("snapshot for %r unchanged; nothing to write", subscription.name)
                    continue
                await write_snapshot(store, current, options, subscription)
                subscription.snapshots_written += 1


def persist_state(
    store: EntryStore,
    container: StateContainer,
    *,
    prefix: Optional[str] = DEFAULT_PREFIX,
    debounce_ms: Optional[float] = DEFAULT_DEBOUNCE_MS,
    cas: Optional[CasPolicy] = None,
    distinct: Optional[DistinctPolicy] = None,
) -> PersistSubscription:
    """Start persisting `container` into `store` and return the running subscription.

    Every value the container takes after this call is debounced by
    `debounce_ms`; the latest value of a burst is compared with the previous
    persisted-or-skipped one (the container's value at this call, initially)
    using `distinct`, and if it changed each of its top-level keys is written
    under `prefix`, guarded by `cas`.

    Must be called from inside a running event loop. Invalid options raise
    `MisuseError` right away.
    """
    options = SyncOptions.build(prefix=prefix, debounce_ms=debounce_ms, cas=cas, distinct=distinct)
    asyncio.get_running_loop()

    subscription = PersistSubscription(name=container.name)
    source = container.subscribe()
    subscription._attach(source)
    seed = container.get_value()
    subscription._start(run_persister(store, source, seed, options, subscription))
    subscription._mark_ready()
    logger.info(
        "persisting %r under prefix %r (debounce %sms)", container.name, options.prefix, options.debounce_ms
    )
    return subscription
