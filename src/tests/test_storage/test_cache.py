from air_ingest.storage.cache import MappingCache


def test_set_if_absent_keeps_first_mapping():
    cache = MappingCache()
    assert cache.set_if_absent("openaq:1", {"11": "pm25"}) == {"11": "pm25"}
    assert cache.set_if_absent("openaq:1", {"11": "pm10"}) == {"11": "pm25"}
    assert cache.get("openaq:1") == {"11": "pm25"}


def test_get_returns_copy():
    cache = MappingCache()
    cache.set_if_absent("openaq:1", {"11": "pm25"})
    cache.get("openaq:1")["12"] = "no2"
    assert cache.get("openaq:1") == {"11": "pm25"}


def test_invalidate_and_clear():
    cache = MappingCache()
    cache.set_if_absent("a", {"1": "pm25"})
    cache.set_if_absent("b", {"1": "pm10", "2": "o3"})
    assert cache.get_stats()["channels"] == 3

    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    assert cache.get("a") is None

    cache.clear()
    assert cache.get_size() == 0
