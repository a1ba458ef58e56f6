import asyncio
import json
import traceback
from typing import Callable, Dict, Optional, Set
from ..adapters.mqtt import BrokerConnection, BrokerConnectionConfig
from ..core.event_manager import EventManager, EVENT_MQTT_DATA
from ..core.normalizer import Normalizer
from ..core.source_registry import SourceRegistry
from ..models.observation import Station
from ..models.source import Source, SourceKind
from ..storage.observation_db import ObservationRepository
from ..storage.station_db import StationRepository
from ..utils.logging import get_logger
from ..utils.exceptions import PayloadError

logger = get_logger(__name__)

DEFAULT_RECONCILE_INTERVAL = 30

ConnectionFactory = Callable[..., BrokerConnection]


class BrokerIngestionManager:
    """
    Keeps one live broker connection per active push source.

    The connection map is owned here and only touched under ``_lock``,
    which is held while reconciling or stopping. Message handling runs on
    the connections' own workers and never takes the lock.
    """
    def __init__(
        self,
        registry: SourceRegistry,
        normalizer: Normalizer,
        observations: ObservationRepository,
        stations: StationRepository,
        event_manager: EventManager,
        reconcile_interval: float = DEFAULT_RECONCILE_INTERVAL,
        connection_options: Optional[Dict] = None,
        connection_factory: ConnectionFactory = BrokerConnection
    ):
        self.registry = registry
        self.normalizer = normalizer
        self.observations = observations
        self.stations = stations
        self.event_manager = event_manager
        self.reconcile_interval = reconcile_interval
        self.connection_options = connection_options or {}
        self.connection_factory = connection_factory

        self.connections: Dict[str, BrokerConnection] = {}
        self._lock = asyncio.Lock()
        self._retiring: Set[asyncio.Task] = set()

    async def run(self, shutdown_event: asyncio.Event) -> None:
        logger.info(f"Broker ingestion started, reconciling every {self.reconcile_interval}s")
        while not shutdown_event.is_set():
            try:
                await self.reconcile()
            except Exception:
                logger.error(f"Broker reconciliation failed: {traceback.format_exc()}")
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.reconcile_interval)
            except asyncio.TimeoutError:
                pass
        await self.stop()

    async def reconcile(self) -> None:
        """Make the live connections match the set of active push sources"""
        sources = {s.id: s for s in await self.registry.list_active(SourceKind.PUSH)}

        async with self._lock:
            stale = [source_id for source_id in self.connections if source_id not in sources]
            fresh = [source for source_id, source in sources.items() if source_id not in self.connections]

            for source_id in stale:
                connection = self.connections.pop(source_id)
                try:
                    await connection.disconnect()
                except Exception as e:
                    logger.error(f"Error stopping broker connection for {source_id}: {e}")

            for source in fresh:
                try:
                    connection = self._create_connection(source)
                    await connection.connect()
                    self.connections[source.id] = connection
                except Exception as e:
                    logger.error(f"Failed to start broker connection for {source.name}: {e}")
                    await self.registry.record_failure(source.id, str(e))

            if stale or fresh:
                logger.info(
                    f"Broker connections reconciled: {len(fresh)} started, {len(stale)} stopped, "
                    f"{len(self.connections)} live"
                )

    async def retire(self, source_id: str) -> None:
        """Stop one source's connection right away instead of waiting for the next reconcile"""
        async with self._lock:
            connection = self.connections.pop(source_id, None)
            if connection is None:
                return
            try:
                await connection.disconnect()
            except Exception as e:
                logger.error(f"Error stopping broker connection for {source_id}: {e}")
        logger.info(f"Broker connection for {source_id} stopped after deactivation")

    async def stop(self) -> None:
        async with self._lock:
            for source_id, connection in list(self.connections.items()):
                try:
                    await connection.disconnect()
                except Exception as e:
                    logger.error(f"Error stopping broker connection for {source_id}: {e}")
            if self.connections:
                logger.info(f"Stopped {len(self.connections)} broker connections")
            self.connections.clear()

    def _create_connection(self, source: Source) -> BrokerConnection:
        config = BrokerConnectionConfig.from_source(source, **self.connection_options)

        async def on_message(topic: str, payload: bytes) -> None:
            await self.handle_message(source, topic, payload)

        async def on_connected() -> None:
            await self.registry.record_success(source.id)

        async def on_disconnected(reason: str) -> None:
            if await self.registry.record_failure(source.id, reason):
                logger.warning(f"Broker source {source.name} deactivated, stopping its connection")
                # runs inside the connection's own task, which disconnect() cancels
                task = asyncio.create_task(self.retire(source.id))
                self._retiring.add(task)
                task.add_done_callback(self._retiring.discard)

        return self.connection_factory(
            config,
            on_message=on_message,
            on_connected=on_connected,
            on_disconnected=on_disconnected
        )

    async def handle_message(self, source: Source, topic: str, payload: bytes) -> None:
        """Decode, normalize, enrich, store and publish one broker message"""
        try:
            document = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Dropping malformed message from {source.name} on {topic}: {e}")
            return

        try:
            observation = await self.normalizer.from_push_message(source, document)
        except PayloadError as e:
            logger.warning(f"Dropping message from {source.name} on {topic}: {e}")
            return

        observation = await self.normalizer.enrich(observation, source)
        await self.observations.upsert(observation)
        await self.stations.ensure(Station(
            station_id=source.station_id,
            name=source.name,
            latitude=source.latitude or 0.0,
            longitude=source.longitude or 0.0,
            type=source.station_type,
            metadata={"broker": source.endpoint}
        ))
        await self.event_manager.publish(EVENT_MQTT_DATA, observation.to_wire())
        await self.registry.record_message(source.id)
        logger.debug(f"Stored {observation.id} from {source.name} ({len(observation.parameters)} parameters)")

    @property
    def live_sources(self):
        return sorted(self.connections)
