from __future__ import annotations

import asyncio
from typing import AsyncIterator, Optional, Tuple, TypeVar


T = TypeVar("T")

_MISSING = object()


class _End:
    __slots__ = ("error",)

    def __init__(self, error: Optional[BaseException] = None) -> None:
        self.error = error


async def pairwise_start_with(source: AsyncIterator[T], seed: T) -> AsyncIterator[Tuple[T, T]]:
    """Yield ``(seed, v1), (v1, v2), ...`` for the values of `source`.

    The seed is only ever emitted as the first element of a pair; if `source`
    ends without producing anything, nothing is yielded.
    """
    previous = seed
    async for value in source:
        yield previous, value
        previous = value


async def debounce(source: AsyncIterator[T], seconds: float) -> AsyncIterator[T]:
    """Coalesce bursts from `source`, yielding the latest value once it goes quiet.

    A background task drains `source` into a buffer so the producer never
    waits on the consumer. A value is yielded only after `seconds` pass with
    no newer arrival; superseded values are dropped, never yielded. When
    `source` ends, a value still pending is flushed before finishing; when it
    fails, the error is re-raised here.
    """
    buffer: asyncio.Queue = asyncio.Queue()

    async def pump() -> None:
        try:
            async for item in source:
                buffer.put_nowait(item)
        except Exception as exc:
            buffer.put_nowait(_End(exc))
        else:
            buffer.put_nowait(_End())

    task = asyncio.create_task(pump())
    pending = _MISSING
    try:
        while True:
            try:
                if pending is _MISSING:
                    item = await buffer.get()
                else:
                    item = await asyncio.wait_for(buffer.get(), timeout=seconds)
            except asyncio.TimeoutError:
                value, pending = pending, _MISSING
                yield value
                continue

            if isinstance(item, _End):
                if item.error is not None:
                    raise item.error
                if pending is not _MISSING:
                    yield pending
                return
            pending = item
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


async def start_with(source: AsyncIterator[T], first: T) -> AsyncIterator[T]:
    """Yield `first`, then every value of `source`."""
    yield first
    async for value in source:
        yield value
