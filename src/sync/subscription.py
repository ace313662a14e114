from __future__ import annotations

import asyncio
import logging
from typing import Any, Coroutine, List, Optional

from state.container import StateSubscription


logger = logging.getLogger(__name__)


class PersistSubscription:
    """
    Handle on a running load/persist pipeline.

    - `unsubscribe()` stops the pipeline cooperatively: no write is issued
      after it, but a write already in flight is allowed to finish.
    - `wait()` returns once the pipeline has ended. It re-raises the store
      error that stopped it, and returns `None` after a clean unsubscribe.
    - `wait_ready()` returns once the persister is observing the container
      (immediately for `persist_state`, after hydration for
      `load_then_persist`).
    """

    def __init__(self, name: str = "state") -> None:
        self.name = name
        self.snapshots_written = 0
        self.writes_issued = 0
        self._unsubscribed = False
        self._sources: List[StateSubscription] = []
        self._ready = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

    # -------- Internal wiring --------
    def _start(self, coro: Coroutine[Any, Any, None]) -> None:
        self._task = asyncio.get_running_loop().create_task(coro, name=f"persist:{self.name}")
        self._task.add_done_callback(self._on_done)

    def _attach(self, source: StateSubscription) -> None:
        self._sources.append(source)
        if self._unsubscribed:
            source.close()

    def _mark_ready(self) -> None:
        self._ready.set()

    def _on_done(self, task: asyncio.Task) -> None:
        for source in self._sources:
            source.close()
        if task.cancelled():
            logger.info("persist pipeline %r cancelled", self.name)
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("persist pipeline %r stopped: %s", self.name, exc)
        else:
            logger.info("persist pipeline %r finished", self.name)

    # -------- Public API --------
    @property
    def unsubscribed(self) -> bool:
        return self._unsubscribed

    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def exception(self) -> Optional[BaseException]:
        if self._task is None or not self._task.done() or self._task.cancelled():
            return None
        return self._task.exception()

    def unsubscribe(self) -> None:
        if self._unsubscribed:
            return
        self._unsubscribed = True
        for source in self._sources:
            source.close()

    def cancel(self) -> None:
        """Stop immediately, abandoning an in-flight write."""
        self.unsubscribe()
        if self._task is not None:
            self._task.cancel()

    async def wait(self) -> None:
        if self._task is None:
            return
        await asyncio.wait({self._task})
        if self._task.cancelled():
            return
        exc = self._task.exception()
        if exc is not None:
            raise exc

    async def wait_ready(self) -> None:
        if self._task is None or self._ready.is_set():
            return
        ready = asyncio.ensure_future(self._ready.wait())
        try:
            await asyncio.wait({ready, self._task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            ready.cancel()
        if not self._ready.is_set():
            await self.wait()

    async def aclose(self) -> None:
        self.unsubscribe()
        await self.wait()
