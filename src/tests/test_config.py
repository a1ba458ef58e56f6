import asyncio
import pytest
from air_ingest.__main__ import ConfigManager, create_default_config
from air_ingest.utils.exceptions import ConfigurationError


def test_default_config_is_loadable(tmp_path):
    path = tmp_path / "config" / "air_ingest.yml"
    create_default_config(path)

    config = ConfigManager.load_config(str(path))
    settings = ConfigManager.ingestion_settings(config)

    assert settings.reconcile_interval == 30
    assert settings.poll_tick_interval == 60
    assert settings.failure_threshold == 5
    assert settings.openaq.enabled is False
    assert [s["kind"] for s in settings.sources] == ["pull", "push"]
    assert ConfigManager.database_settings(config).path == "air_ingest.db"


def test_missing_sections(tmp_path):
    path = tmp_path / "partial.yml"
    path.write_text("api:\n  host: localhost\n")
    with pytest.raises(ConfigurationError, match="database"):
        ConfigManager.load_config(str(path))


def test_missing_and_empty_files(tmp_path):
    with pytest.raises(ConfigurationError):
        ConfigManager.load_config(str(tmp_path / "absent.yml"))
    empty = tmp_path / "empty.yml"
    empty.write_text("")
    with pytest.raises(ConfigurationError):
        ConfigManager.load_config(str(empty))


def test_invalid_ingestion_values():
    with pytest.raises(ConfigurationError):
        ConfigManager.ingestion_settings({"ingestion": {"failure_threshold": 0}})


def test_app_creates_loop_objects_inside_the_running_loop(tmp_path):
    from air_ingest.__main__ import AirIngestApp
    path = tmp_path / "app.yml"
    path.write_text(
        "api: {host: 127.0.0.1, port: 8000}\n"
        f"database: {{path: '{tmp_path / 'app.db'}'}}\n"
        "ingestion: {}\n"
        f"logging: {{level: WARNING, file: '{tmp_path / 'app.log'}'}}\n"
    )

    app = AirIngestApp(str(path))
    assert app.shutdown_event is None
    assert app.event_manager is None

    async def exercise():
        await app.prepare()
        await app.event_manager.publish("NewExternalData", {"id": "urn:x"})
        assert await app.event_manager.event_queue.get() == ("NewExternalData", {"id": "urn:x"})
        await app.shutdown()
        await asyncio.wait_for(app.shutdown_event.wait(), timeout=1)

    asyncio.run(exercise())
    assert app.shutdown_event.is_set()
