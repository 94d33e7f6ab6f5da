from __future__ import annotations

import asyncio

import pytest

from searchloop.streams import StreamableUI, StreamableValue, StreamClosedError, merge
from searchloop.view import ViewNode


def _node(i: str) -> ViewNode:
    return ViewNode(id=i, kind="answer")


def test_value_stream_replays_in_order_to_late_readers():
    async def _go():
        v = StreamableValue()
        v.append("Par")
        v.append("is")
        v.done()
        return [e.value async for e in v], v.value

    events, value = asyncio.run(_go())
    assert events == ["Par", "is"]
    assert value == "Paris"


def test_reader_sees_writes_made_while_waiting():
    async def _go():
        v = StreamableValue(True)
        seen = []

        async def read():
            async for e in v:
                seen.append(e.value)

        reader = asyncio.create_task(read())
        await asyncio.sleep(0)
        v.update(True)
        await asyncio.sleep(0)
        v.done(False)
        await reader
        return seen

    assert asyncio.run(_go()) == [True, False]


def test_done_with_value_sets_final_value():
    async def _go():
        v = StreamableValue(False)
        v.done(True)
        return v.value, v.closed

    assert asyncio.run(_go()) == (True, True)


def test_writes_after_done_raise():
    async def _go():
        ui = StreamableUI()
        ui.done()
        with pytest.raises(StreamClosedError):
            ui.append(_node("a"))

    asyncio.run(_go())


def test_ui_update_replaces_current_node_and_append_adds():
    async def _go():
        ui = StreamableUI()
        ui.update(_node("spinner"))
        ui.update(_node("answer"))
        ui.append(_node("related"))
        ui.update(None)
        ui.done()
        return ui.value, [e.op for e in ui.events]

    value, ops = asyncio.run(_go())
    assert [n.id for n in value] == ["answer"]
    assert ops == ["update", "update", "append", "update"]


def test_merge_keeps_per_stream_order_and_ends_when_all_close():
    async def _go():
        a, b = StreamableValue(), StreamableValue()

        async def produce():
            for i in range(3):
                a.update(i)
                b.update(i * 10)
                await asyncio.sleep(0)
            a.done()
            b.done()

        producer = asyncio.create_task(produce())
        out = [(name, e.value) async for name, e in merge(a=a, b=b)]
        await producer
        return out

    out = asyncio.run(_go())
    assert [v for n, v in out if n == "a"] == [0, 1, 2]
    assert [v for n, v in out if n == "b"] == [0, 10, 20]
