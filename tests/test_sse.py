import asyncio
import json

import pytest
from asgi_lifespan import LifespanManager

from codestudio.main import stream_events, stream_global_events


def _decode(chunk) -> dict:
    line = chunk.decode("utf-8") if isinstance(chunk, (bytes, bytearray)) else chunk
    return json.loads(line.replace("data:", "").strip())


@pytest.mark.asyncio
async def test_session_sse_stream_returns_past_events(app_factory):
    app, _, _ = app_factory()
    async with LifespanManager(app):
        db = app.state.db
        bus = app.state.bus
        await bus.emit("s-sse", "batch_started", {"agents": ["a1"]})
        response = await stream_events("s-sse", db=db, bus=bus)
        chunk = await asyncio.wait_for(response.body_iterator.__anext__(), timeout=1)
        payload = _decode(chunk)
        assert payload["event_type"] == "batch_started"
        assert payload["seq"] == 1
        assert payload["payload"]["session_id"] == "s-sse"
        await response.body_iterator.aclose()


@pytest.mark.asyncio
async def test_global_sse_stream_receives_new_event(app_factory):
    app, _, _ = app_factory()
    async with LifespanManager(app):
        bus = app.state.bus
        response = await stream_global_events(bus=bus)

        async def emit_event():
            await asyncio.sleep(0.01)
            await bus.emit("s1", "agent_done", {"agent_id": "a1"})

        task = asyncio.create_task(emit_event())
        chunk = await asyncio.wait_for(response.body_iterator.__anext__(), timeout=1)
        payload = _decode(chunk)
        assert payload["event_type"] == "agent_done"
        await task
        await response.body_iterator.aclose()


@pytest.mark.asyncio
async def test_concurrent_emits_get_distinct_sequence_numbers(app_factory):
    app, _, _ = app_factory()
    async with LifespanManager(app):
        bus = app.state.bus
        await asyncio.gather(*(bus.emit("s1", "tool_start", {"n": i}) for i in range(5)))
        events = await app.state.db.list_events("s1")
        assert [e["seq"] for e in events] == [1, 2, 3, 4, 5]
