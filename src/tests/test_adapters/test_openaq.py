import pytest
from datetime import datetime, timezone
from unittest.mock import AsyncMock
from air_ingest.adapters.openaq import EnrichmentConfig, OpenAQClient
from air_ingest.utils.exceptions import PayloadError


@pytest.mark.asyncio
async def test_latest_parses_results():
    rest = AsyncMock()
    rest.get_json.return_value = {"results": [
        {"sensorsId": 101, "value": 12.5, "datetime": {"utc": "2024-01-01T00:00:00Z"}},
        {"value": 3.0},
        {"sensorsId": 102, "value": None},
    ]}
    client = OpenAQClient(rest, EnrichmentConfig(enabled=True, api_key="secret"))

    items = await client.latest(42)

    rest.get_json.assert_awaited_once_with(
        "https://api.openaq.org/v3/locations/42/latest", headers={"X-API-Key": "secret"}
    )
    assert items == [
        {"channel": "101", "value": 12.5, "observed_at": datetime(2024, 1, 1, tzinfo=timezone.utc)},
        {"channel": "102", "value": None, "observed_at": None},
    ]


@pytest.mark.asyncio
async def test_latest_rejects_unexpected_body():
    rest = AsyncMock()
    rest.get_json.return_value = ["not", "a", "dict"]
    client = OpenAQClient(rest, EnrichmentConfig(enabled=True))

    with pytest.raises(PayloadError):
        await client.latest(42)


def test_location_helpers():
    client = OpenAQClient(AsyncMock(), EnrichmentConfig(base_url="https://aq.example/v3/"))
    assert client.headers == {}
    assert OpenAQClient.location_key(42) == "openaq:42"
    assert client.metadata_url(42) == "https://aq.example/v3/locations/42"
