import asyncio
import traceback
from datetime import datetime, timedelta
from typing import Any, List, Optional
from ..adapters.rest import RestAPIAdapter
from ..core.event_manager import EventManager, EVENT_HTTP_DATA
from ..core.normalizer import Normalizer
from ..core.source_registry import SourceRegistry
from ..models.observation import Observation, Station
from ..models.source import PayloadFormat, Source, SourceKind
from ..storage.observation_db import ObservationRepository
from ..storage.station_db import StationRepository
from ..utils.helpers import as_utc, utcnow
from ..utils.logging import get_logger
from ..utils.exceptions import AirIngestError, PayloadError

logger = get_logger(__name__)

DEFAULT_TICK_INTERVAL = 60


class ScheduledPuller:
    """
    Polls pull sources on their own interval.

    Every tick walks the active pull sources and fetches those whose last
    successful fetch is older than their interval. A source that keeps
    failing is fetched again on every tick until the registry deactivates it.
    """
    def __init__(
        self,
        registry: SourceRegistry,
        normalizer: Normalizer,
        rest: RestAPIAdapter,
        observations: ObservationRepository,
        stations: StationRepository,
        event_manager: EventManager,
        tick_interval: float = DEFAULT_TICK_INTERVAL
    ):
        self.registry = registry
        self.normalizer = normalizer
        self.rest = rest
        self.observations = observations
        self.stations = stations
        self.event_manager = event_manager
        self.tick_interval = tick_interval

    async def run(self, shutdown_event: asyncio.Event) -> None:
        logger.info(f"Scheduled puller started, checking sources every {self.tick_interval}s")
        while not shutdown_event.is_set():
            try:
                await self.sweep()
            except Exception:
                logger.error(f"Pull sweep failed: {traceback.format_exc()}")
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self.tick_interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Scheduled puller stopped")

    def is_due(self, source: Source, now: datetime) -> bool:
        if source.last_success_at is None:
            return True
        return as_utc(now) - as_utc(source.last_success_at) >= timedelta(minutes=source.interval_minutes)

    async def sweep(self, now: Optional[datetime] = None) -> int:
        """Fetch every due source once. Returns the number of sources fetched."""
        now = now or utcnow()
        due = [s for s in await self.registry.list_active(SourceKind.PULL) if self.is_due(s, now)]
        for source in due:
            try:
                await self.fetch_source(source)
            except Exception:
                logger.error(f"Unhandled error while fetching {source.name}: {traceback.format_exc()}")
        return len(due)

    async def fetch_source(self, source: Source) -> List[Observation]:
        """Fetch, normalize and store one source, recording the outcome in the registry"""
        logger.info(f"Fetching {source.name} from {source.url}")
        try:
            document = await self.rest.get_json(source.url, headers=source.headers or None)
            observations = self._normalize(source, document)
        except AirIngestError as e:
            logger.warning(f"Fetch of {source.name} failed: {e}")
            await self.registry.record_failure(source.id, str(e))
            return []

        stored = []
        for observation in observations:
            observation = await self.normalizer.enrich(observation, source)
            await self.observations.upsert(observation)
            if not stored:
                await self._ensure_station(source)
            await self.event_manager.publish(EVENT_HTTP_DATA, observation.to_wire())
            stored.append(observation)

        await self.registry.record_success(source.id)
        logger.info(f"Stored {len(stored)} observations from {source.name}")
        return stored

    def _normalize(self, source: Source, document: Any) -> List[Observation]:
        if source.payload_format == PayloadFormat.ADHOC:
            return [self.normalizer.from_adhoc(source, document)]

        entities = document if isinstance(document, list) else [document]
        observations = []
        for entity in entities:
            try:
                observations.append(self.normalizer.from_canonical(source, entity))
            except PayloadError as e:
                logger.warning(f"Skipping invalid entity from {source.name}: {e}")
        if not observations:
            raise PayloadError(f"No valid {source.payload_format.value} entity in response from {source.name}")
        return observations

    async def _ensure_station(self, source: Source) -> None:
        await self.stations.ensure(Station(
            station_id=source.station_id,
            name=source.name,
            latitude=source.latitude or 0.0,
            longitude=source.longitude or 0.0,
            type=source.station_type,
            metadata={"sourceUrl": source.url}
        ))
