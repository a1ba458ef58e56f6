import asyncio
import pytest
from air_ingest.core.event_manager import EventManager, EVENT_HTTP_DATA


@pytest.mark.asyncio
async def test_dispatch_reaches_subscribers():
    manager = EventManager()
    received = []

    async def subscriber(data):
        received.append(data)

    async def broken(data):
        raise RuntimeError("subscriber bug")

    await manager.subscribe(EVENT_HTTP_DATA, broken)
    await manager.subscribe(EVENT_HTTP_DATA, subscriber)
    task = asyncio.create_task(manager.process_events())
    try:
        await manager.publish(EVENT_HTTP_DATA, {"id": "urn:x"})
        await asyncio.wait_for(manager.event_queue.join(), timeout=1)
    finally:
        task.cancel()

    assert received == [{"id": "urn:x"}]


@pytest.mark.asyncio
async def test_full_queue_drops_events():
    manager = EventManager(max_queue_size=1)
    await manager.publish(EVENT_HTTP_DATA, {"id": 1})
    await manager.publish(EVENT_HTTP_DATA, {"id": 2})
    assert manager.event_queue.qsize() == 1
