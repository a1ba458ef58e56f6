import asyncio
import json
import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from air_ingest.core.broker_manager import BrokerIngestionManager
from air_ingest.core.event_manager import EVENT_MQTT_DATA
from air_ingest.models.source import Source, SourceKind


class FakeConnection:
    def __init__(self, config, on_message, on_connected=None, on_disconnected=None):
        self.config = config
        self.on_message = on_message
        self.on_connected = on_connected
        self.on_disconnected = on_disconnected
        self.connect = AsyncMock()
        self.disconnect = AsyncMock()


@pytest_asyncio.fixture
async def manager(registry, normalizer, database, event_manager, push_source):
    await registry.create(push_source)
    event_manager.publish = AsyncMock()
    return BrokerIngestionManager(
        registry,
        normalizer,
        database.observations,
        database.stations,
        event_manager,
        connection_factory=FakeConnection
    )


@pytest.mark.asyncio
async def test_reconcile_starts_and_stops_connections(manager, registry):
    await manager.reconcile()
    connection = manager.connections["src-campus"]
    connection.connect.assert_awaited_once()
    assert connection.config.topic == "sensors/air"
    assert connection.config.client_id == "air-ingest-src-campus"

    # a second pass with the same sources changes nothing
    await manager.reconcile()
    assert manager.connections["src-campus"] is connection

    await registry.deactivate("src-campus")
    await manager.reconcile()
    assert manager.connections == {}
    connection.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_reconcile_picks_up_new_sources(manager, registry):
    await manager.reconcile()
    await registry.create(Source(name="Second broker", kind="push", broker_host="10.0.0.2", topic="aq/#"))

    await manager.reconcile()

    assert len(manager.connections) == 2


@pytest.mark.asyncio
async def test_stop_disposes_everything(manager):
    await manager.reconcile()
    connection = manager.connections["src-campus"]

    await manager.stop()

    assert manager.connections == {}
    connection.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_message_is_stored_and_published(manager, registry, database, event_manager):
    await manager.reconcile()
    connection = manager.connections["src-campus"]
    payload = json.dumps({"pm25": 9.5, "timestamp": "2024-01-01T00:00:00Z"}).encode()

    await connection.on_message("sensors/air", payload)

    entity_id = "urn:ngsi-ld:AirQualityObserved:campus-01:20240101000000"
    assert await database.observations.exists(entity_id)
    event_manager.publish.assert_awaited_once()
    assert event_manager.publish.await_args.args[0] == EVENT_MQTT_DATA
    station = await database.stations.get("campus-01")
    assert station.type == "external-mqtt"
    assert (await registry.get("src-campus")).message_count == 1


@pytest.mark.asyncio
async def test_malformed_message_is_dropped(manager, registry, database, event_manager):
    await manager.reconcile()
    connection = manager.connections["src-campus"]

    await connection.on_message("sensors/air", b"{not json")

    assert await database.observations.count() == 0
    event_manager.publish.assert_not_awaited()
    source = await registry.get("src-campus")
    assert source.failure_count == 0
    assert source.message_count == 0


@pytest.mark.asyncio
async def test_connection_events_feed_the_registry(manager, registry):
    await manager.reconcile()
    connection = manager.connections["src-campus"]

    for _ in range(5):
        await connection.on_disconnected("connection refused")
    await asyncio.gather(*list(manager._retiring))
    assert await registry.list_active(SourceKind.PUSH) == []

    await registry.reactivate("src-campus")
    await connection.on_disconnected("connection refused")
    await connection.on_connected()
    source = await registry.get("src-campus")
    assert source.failure_count == 0
    assert source.last_success_at is not None


@pytest.mark.asyncio
async def test_tripped_breaker_stops_connection_immediately(manager, registry):
    await manager.reconcile()
    connection = manager.connections["src-campus"]

    for _ in range(5):
        await connection.on_disconnected("connection refused")
    await asyncio.gather(*list(manager._retiring))

    assert manager.connections == {}
    connection.disconnect.assert_awaited_once()
    assert (await registry.get("src-campus")).failure_count == 5

    # the next reconcile pass has nothing left to stop
    await manager.reconcile()
    connection.disconnect.assert_awaited_once()
