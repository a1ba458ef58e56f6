import pytest
from datetime import datetime, timezone
from air_ingest.models.source import Source, SourceKind
from air_ingest.utils.exceptions import SourceNotFoundError


@pytest.mark.asyncio
async def test_create_and_list_active(registry, pull_source, push_source):
    await registry.create(pull_source)
    await registry.create(push_source)

    pulls = await registry.list_active(SourceKind.PULL)
    pushes = await registry.list_active(SourceKind.PUSH)

    assert [s.id for s in pulls] == ["src-hn"]
    assert [s.id for s in pushes] == ["src-campus"]
    assert pulls[0].field_mappings == {"pm25": "$.pm2_5", "timestamp": "$.ts"}


@pytest.mark.asyncio
async def test_breaker_trips_exactly_once(registry, pull_source):
    await registry.create(pull_source)

    results = [await registry.record_failure("src-hn", f"HTTP 503 #{i}") for i in range(7)]

    assert results == [False, False, False, False, True, False, False]
    source = await registry.get("src-hn")
    assert source.is_active is False
    assert source.failure_count == 7
    assert source.last_error == "HTTP 503 #6"
    assert await registry.list_active(SourceKind.PULL) == []


@pytest.mark.asyncio
async def test_success_resets_counter(registry, pull_source):
    await registry.create(pull_source)
    for _ in range(4):
        await registry.record_failure("src-hn", "timeout")

    at = datetime(2024, 1, 1, tzinfo=timezone.utc)
    await registry.record_success("src-hn", at)
    source = await registry.get("src-hn")

    assert source.failure_count == 0
    assert source.last_error is None
    assert source.last_success_at == at

    # four more failures are not enough to trip after the reset
    for _ in range(4):
        assert await registry.record_failure("src-hn", "timeout") is False
    assert (await registry.get("src-hn")).is_active is True


@pytest.mark.asyncio
async def test_reactivate_resets_state(registry, pull_source):
    await registry.create(pull_source)
    for _ in range(5):
        await registry.record_failure("src-hn", "boom")

    await registry.reactivate("src-hn")
    source = await registry.get("src-hn")

    assert source.is_active is True
    assert source.failure_count == 0
    assert source.last_error is None
    assert len(await registry.list_active(SourceKind.PULL)) == 1


@pytest.mark.asyncio
async def test_unknown_source(registry):
    with pytest.raises(SourceNotFoundError):
        await registry.get("missing")
    with pytest.raises(SourceNotFoundError):
        await registry.delete("missing")
    assert await registry.record_failure("missing", "boom") is False


@pytest.mark.asyncio
async def test_record_message_counts(registry, push_source):
    await registry.create(push_source)
    await registry.record_message("src-campus")
    await registry.record_message("src-campus")

    source = await registry.get("src-campus")
    assert source.message_count == 2
    assert source.last_message_at is not None


@pytest.mark.asyncio
async def test_sync_from_config_keeps_existing_state(registry):
    entries = [{
        "name": "Configured feed",
        "kind": "pull",
        "url": "https://example.org/feed.json",
    }]
    first = await registry.sync_from_config(entries)
    await registry.record_failure(first[0].id, "boom")

    second = await registry.sync_from_config(entries)

    assert first[0].id == second[0].id
    assert second[0].failure_count == 1
    assert second[0].station_id == "station-configured-feed"
    assert len(await registry.list_all()) == 1


def test_threshold_must_be_positive(database):
    from air_ingest.core.source_registry import SourceRegistry
    with pytest.raises(ValueError):
        SourceRegistry(database.sources, failure_threshold=0)


def test_source_requires_kind_settings():
    with pytest.raises(ValueError):
        Source(name="no broker", kind="push", topic="a/b")
    with pytest.raises(ValueError):
        Source(name="no mappings", kind="pull", url="https://x", payload_format="adhoc")
