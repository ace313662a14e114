"""
Observable holder for the in-memory state mapping.

`StateContainer` keeps one current `State` value, replaces it through
functional updates, and pushes every new value to its subscribers. Updates
are synchronous; subscribers consume asynchronously from their own buffer, so
a slow consumer never blocks `update()`.

Reducers must return a new mapping rather than mutating the one they are
given: subscribers compare consecutive snapshots, and an in-place mutation
makes the previous snapshot identical to the new one.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from .models import State


Reducer = Callable[[State], State]

_CLOSED = object()


class StateSubscription:
    """
    Buffered feed of the values a container takes after `subscribe()`.

    Iterate with `async for`; iteration ends after `close()` (or the
    container's `complete()`) once the values already buffered are drained.
    """

    def __init__(self, container: "StateContainer") -> None:
        self._container = container
        self._buffer: asyncio.Queue = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, value: State) -> None:
        if not self._closed:
            self._buffer.put_nowait(value)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._container._detach(self)
        self._buffer.put_nowait(_CLOSED)

    def __aiter__(self) -> "StateSubscription":
        return self

    async def __anext__(self) -> State:
        item = await self._buffer.get()
        if item is _CLOSED:
            # Leave the marker for any later reader
            self._buffer.put_nowait(_CLOSED)
            raise StopAsyncIteration
        return item


class StateContainer:
    """
    Observable `State` holder.

    - `value` / `get_value()` return the current mapping synchronously.
    - `update(*reducers)` applies the reducers left to right and emits the
      result once.
    - `subscribe()` returns a `StateSubscription` receiving every value set
      after the call. The current value is not replayed.
    """

    def __init__(self, initial: Optional[Mapping[str, Any]] = None, *, name: str = "state") -> None:
        self.name = name
        self._value: State = dict(initial or {})
        self._subscribers: List[StateSubscription] = []

    @classmethod
    def with_entities(cls, initial: Optional[Mapping[str, Any]] = None, *, name: str = "state") -> "StateContainer":
        """Container pre-seeded with empty `entities` and `ids` collections."""
        base: Dict[str, Any] = {"entities": {}, "ids": []}
        base.update(initial or {})
        return cls(base, name=name)

    @property
    def value(self) -> State:
        return self._value

    def get_value(self) -> State:
        return self._value

    def update(self, *reducers: Reducer) -> State:
        if not reducers:
            raise ValueError("update() needs at least one reducer")
        value = self._value
        for reducer in reducers:
            value = reducer(value)
            if not isinstance(value, Mapping):
                raise TypeError(f"reducer returned {type(value).__name__}, expected a mapping")
        self._value = dict(value)
        for sub in list(self._subscribers):
            sub._push(self._value)
        return self._value

    def subscribe(self) -> StateSubscription:
        sub = StateSubscription(self)
        self._subscribers.append(sub)
        return sub

    def complete(self) -> None:
        """Close every open subscription."""
        for sub in list(self._subscribers):
            sub.close()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _detach(self, sub: StateSubscription) -> None:
        try:
            self._subscribers.remove(sub)
        except ValueError:
            pass


# -------- Reducers --------
def set_prop(key: str, value: Any) -> Reducer:
    def reducer(state: State) -> State:
        return {**state, key: value}

    return reducer


def set_props(props: Mapping[str, Any]) -> Reducer:
    def reducer(state: State) -> State:
        return {**state, **props}

    return reducer


def add_entities(*entities: Mapping[str, Any], id_key: str = "id") -> Reducer:
    """Add records to the `entities` map and append new ids to `ids`.

    Records whose id already exists replace the stored record and keep their
    position in `ids`.
    """

    def reducer(state: State) -> State:
        stored = dict(state.get("entities") or {})
        ids = list(state.get("ids") or [])
        for entity in _flatten(entities):
            if id_key not in entity:
                raise KeyError(f"entity is missing its {id_key!r} field")
            ident = entity[id_key]
            if ident not in stored:
                ids.append(ident)
            stored[ident] = dict(entity)
        return {**state, "entities": stored, "ids": ids}

    return reducer


def _flatten(entities: Iterable[Any]) -> Iterable[Mapping[str, Any]]:
    for item in entities:
        if isinstance(item, Mapping):
            yield item
        else:
            yield from item
