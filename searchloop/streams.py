"""
streams.py
----------
Explicit output channels for a turn.

The turn task is the single producer; any number of readers (the SSE
endpoint, tests) iterate a handle with `async for` and see every write in
order, including writes made before they subscribed. `done()` closes a handle;
writing to a closed handle raises `StreamClosedError`.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Generic, List, Optional, TypeVar

from .view import ViewNode

T = TypeVar("T")

_UNSET: Any = object()


class StreamClosedError(RuntimeError):
    pass


class _Streamable(Generic[T]):
    def __init__(self) -> None:
        self._events: List[T] = []
        self._closed = False
        self._changed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def events(self) -> List[T]:
        return list(self._events)

    def _push(self, event: T) -> None:
        if self._closed:
            raise StreamClosedError(f"{type(self).__name__} is already done")
        self._events.append(event)
        self._notify()

    def _close(self) -> None:
        self._closed = True
        self._notify()

    def _notify(self) -> None:
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def __aiter__(self) -> AsyncIterator[T]:
        i = 0
        while True:
            while i < len(self._events):
                yield self._events[i]
                i += 1
            if self._closed:
                return
            await self._changed.wait()

    async def wait_closed(self) -> None:
        async for _ in self:
            pass


@dataclass(frozen=True)
class ValueEvent:
    op: str  # "update" | "append"
    value: Any


class StreamableValue(_Streamable[ValueEvent]):
    """A single value that is replaced (`update`) or grown (`append`) over time."""

    def __init__(self, initial: Any = None) -> None:
        super().__init__()
        self.value = initial

    def update(self, value: Any) -> None:
        self._push(ValueEvent("update", value))
        self.value = value

    def append(self, delta: str) -> None:
        self._push(ValueEvent("append", delta))
        self.value = (self.value or "") + delta

    def done(self, value: Any = _UNSET) -> None:
        if value is not _UNSET:
            self.update(value)
        self._close()


@dataclass(frozen=True)
class UIEvent:
    op: str  # "update" | "append"
    node: Optional[ViewNode]


class StreamableUI(_Streamable[UIEvent]):
    """
    A growing list of view nodes. `update` replaces the node currently being
    rendered (or clears it with None); `append` starts a new one.
    """

    def __init__(self, initial: Optional[ViewNode] = None) -> None:
        super().__init__()
        self.nodes: List[Optional[ViewNode]] = [initial]

    def update(self, node: Optional[ViewNode]) -> None:
        self._push(UIEvent("update", node))
        self.nodes[-1] = node

    def append(self, node: ViewNode) -> None:
        self._push(UIEvent("append", node))
        self.nodes.append(node)

    def done(self, node: Optional[ViewNode] = _UNSET) -> None:
        if node is not _UNSET:
            self.update(node)
        self._close()

    @property
    def value(self) -> List[ViewNode]:
        return [n for n in self.nodes if n is not None]


async def merge(**streams: _Streamable) -> AsyncIterator[tuple]:
    """
    Interleave several handles into one `(name, event)` sequence, preserving
    the per-handle order. Ends when every handle is closed.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def pump(name: str, stream: _Streamable) -> None:
        async for event in stream:
            await queue.put((name, event))
        await queue.put((name, None))

    tasks = [asyncio.create_task(pump(n, s)) for n, s in streams.items()]
    remaining = len(tasks)
    try:
        while remaining:
            name, event = await queue.get()
            if event is None:
                remaining -= 1
                continue
            yield name, event
    finally:
        for t in tasks:
            t.cancel()
