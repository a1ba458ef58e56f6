import pytest
from fastapi import HTTPException
from air_ingest.api import routes
from air_ingest.models.observation import Station
from air_ingest.models.source import Source, SourceKind


@pytest.mark.asyncio
async def test_create_and_list_sources(registry, database):
    body = Source(
        name="Rooftop broker",
        kind="push",
        broker_host="broker.local",
        topic="roof/air",
        password="hunter2",
        failure_count=9
    )

    created = await routes.create_source(body, registry, database)

    assert created["id"]
    assert created["failure_count"] == 0
    assert "password" not in created
    listed = await routes.list_sources(registry, kind=SourceKind.PUSH)
    assert [s["name"] for s in listed] == ["Rooftop broker"]


@pytest.mark.asyncio
async def test_duplicate_name_conflicts(registry, database, pull_source):
    await registry.create(pull_source)

    with pytest.raises(HTTPException) as exc:
        await routes.create_source(pull_source.model_copy(update={"id": None}), registry, database)
    assert exc.value.status_code == 409


@pytest.mark.asyncio
async def test_deactivate_reactivate_delete(registry, pull_source):
    await registry.create(pull_source)

    assert (await routes.deactivate_source("src-hn", registry))["is_active"] is False
    assert (await routes.reactivate_source("src-hn", registry))["is_active"] is True

    await routes.delete_source("src-hn", registry)
    with pytest.raises(HTTPException) as exc:
        await routes.get_source("src-hn", registry)
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_unknown_source_is_404(registry):
    for call in (routes.reactivate_source, routes.deactivate_source, routes.delete_source):
        with pytest.raises(HTTPException) as exc:
            await call("missing", registry)
        assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_clear_mapping_cache(resolver):
    resolver.cache.set_if_absent("openaq:1", {"1": "pm25"})

    assert await routes.clear_mapping_cache(resolver) == {"cleared": 1}
    assert resolver.cache.get_size() == 0


@pytest.mark.asyncio
async def test_list_stations(database):
    await database.stations.ensure(Station(station_id="hn-01", name="Hanoi"))
    stations = await routes.list_stations(database)
    assert [s.station_id for s in stations] == ["hn-01"]
