import pytest
from datetime import datetime, timedelta, timezone
from air_ingest.models.observation import Observation, ParameterValue, Station
from air_ingest.utils.helpers import observation_entity_id

BASE_TIME = datetime(2024, 1, 1, 0, 0, tzinfo=timezone.utc)


def make_observation(station_id="hn-01", minutes=0, pm25=10.0):
    observed_at = BASE_TIME + timedelta(minutes=minutes)
    return Observation(
        id=observation_entity_id(station_id, observed_at),
        station_id=station_id,
        observed_at=observed_at,
        parameters={"pm25": ParameterValue(value=pm25, unit_code="GQ", observed_at=observed_at)}
    )


@pytest.mark.asyncio
async def test_upsert_replaces_and_keeps_row_id(database):
    store = database.observations
    first = make_observation(pm25=10.0)
    await store.upsert(first)
    row_id = await store.get_row_id(first.id)

    await store.upsert(make_observation(pm25=42.0))

    assert await store.count() == 1
    assert await store.get_row_id(first.id) == row_id
    stored = await store.get(first.id)
    assert stored.parameters["pm25"].value == 42.0


@pytest.mark.asyncio
async def test_exists_and_get(database):
    store = database.observations
    observation = make_observation()
    assert await store.exists(observation.id) is False
    assert await store.get(observation.id) is None

    await store.upsert(observation)

    assert await store.exists(observation.id) is True
    assert (await store.get(observation.id)).station_id == "hn-01"


@pytest.mark.asyncio
async def test_query_ordering(database):
    store = database.observations
    for minutes in (0, 10, 20):
        await store.upsert(make_observation(minutes=minutes))
    await store.upsert(make_observation(station_id="other", minutes=5))

    newest_first = await store.query(station_id="hn-01")
    assert [o.observed_at.minute for o in newest_first] == [20, 10, 0]

    ranged = await store.query(station_id="hn-01", start_time=BASE_TIME + timedelta(minutes=5))
    assert [o.observed_at.minute for o in ranged] == [10, 20]

    limited = await store.query(limit=2)
    assert len(limited) == 2
    assert limited[0].observed_at.minute == 20


@pytest.mark.asyncio
async def test_ensure_station_never_overwrites(database):
    stations = database.stations
    created = await stations.ensure(Station(station_id="hn-01", name="Hanoi", latitude=21.0, longitude=105.8))
    again = await stations.ensure(Station(station_id="hn-01", name="Renamed", latitude=0, longitude=0))

    assert created is True
    assert again is False
    station = await stations.get("hn-01")
    assert station.name == "Hanoi"
    assert station.latitude == 21.0
    assert [s.station_id for s in await stations.list_all()] == ["hn-01"]
