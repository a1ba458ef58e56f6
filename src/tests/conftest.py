import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from air_ingest.core.event_manager import EventManager
from air_ingest.core.mapping_resolver import MappingResolver
from air_ingest.core.normalizer import Normalizer
from air_ingest.core.source_registry import SourceRegistry
from air_ingest.models.source import Source
from air_ingest.storage.cache import MappingCache
from air_ingest.storage.ingest_database import IngestDatabase


@pytest_asyncio.fixture
async def database(tmp_path):
    db = IngestDatabase(str(tmp_path / "ingest.db"), max_connections=2)
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def registry(database):
    return SourceRegistry(database.sources, failure_threshold=5)


@pytest.fixture
def rest():
    adapter = AsyncMock()
    adapter.get_json = AsyncMock()
    return adapter


@pytest.fixture
def resolver(rest):
    return MappingResolver(MappingCache(), rest)


@pytest.fixture
def normalizer(resolver):
    return Normalizer(resolver)


@pytest.fixture
def event_manager():
    return EventManager()


@pytest.fixture
def pull_source():
    return Source(
        id="src-hn",
        name="Hanoi city sensor",
        kind="pull",
        station_id="hn-01",
        latitude=21.0285,
        longitude=105.8542,
        url="https://example.org/air/hanoi.json",
        payload_format="adhoc",
        field_mappings={"pm25": "$.pm2_5", "timestamp": "$.ts"}
    )


@pytest.fixture
def push_source():
    return Source(
        id="src-campus",
        name="Campus broker",
        kind="push",
        station_id="campus-01",
        latitude=21.0,
        longitude=105.8,
        broker_host="localhost",
        topic="sensors/air"
    )
