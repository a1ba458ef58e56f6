# src/air_ingest/__main__.py
import asyncio
import signal
import sys
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from fastapi import FastAPI
from hypercorn.asyncio import serve
from hypercorn.config import Config as HyperConfig
from pydantic import ValidationError
import traceback

from air_ingest.adapters.openaq import OpenAQClient
from air_ingest.adapters.rest import RestAPIAdapter
from air_ingest.api.routes import source_router, station_router
from air_ingest.core.broker_manager import BrokerIngestionManager
from air_ingest.core.event_manager import EventManager
from air_ingest.core.mapping_resolver import MappingResolver
from air_ingest.core.normalizer import Normalizer
from air_ingest.core.scheduled_puller import ScheduledPuller
from air_ingest.core.source_registry import SourceRegistry
from air_ingest.models.settings import DatabaseConfig, IngestionConfig
from air_ingest.storage.cache import MappingCache
from air_ingest.storage.ingest_database import IngestDatabase
from air_ingest.utils.logging import setup_logging, get_logger
from air_ingest.utils.exceptions import ConfigurationError, InitializationError

DEFAULT_CONFIG_PATH = "config/air_ingest.yml"


class ConfigManager:
    """Manages configuration loading and validation"""

    @staticmethod
    def load_config(config_path: str) -> Dict[str, Any]:
        """Load and validate configuration from YAML file"""
        try:
            with open(config_path, 'r') as f:
                config = yaml.safe_load(f)
                if config is None:
                    raise ConfigurationError("Configuration file is empty or incorrectly formatted")

                required_sections = ['api', 'database', 'ingestion', 'logging']
                missing_sections = [section for section in required_sections if section not in config]
                if missing_sections:
                    raise ConfigurationError(f"Missing required configuration sections: {', '.join(missing_sections)}")

                return config
        except yaml.YAMLError:
            raise ConfigurationError(f"Error parsing configuration file: {traceback.format_exc()}")
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file not found: {config_path}")

    @staticmethod
    def ingestion_settings(config: Dict[str, Any]) -> IngestionConfig:
        try:
            return IngestionConfig(**(config.get('ingestion') or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid ingestion configuration: {e}")

    @staticmethod
    def database_settings(config: Dict[str, Any]) -> DatabaseConfig:
        try:
            return DatabaseConfig(**(config.get('database') or {}))
        except ValidationError as e:
            raise ConfigurationError(f"Invalid database configuration: {e}")


class APIServer:
    """Handles API server initialization and management"""

    def __init__(self, config: Dict[str, Any], shutdown_event: asyncio.Event):
        self.config = config
        self.shutdown_event = shutdown_event
        self.logger = get_logger("API Server")
        self.app: Optional[FastAPI] = None

    async def initialize(self, components: Any) -> FastAPI:
        """Initialize FastAPI application with routes"""
        try:
            self.app = FastAPI(
                title="Air Ingest API",
                description="Administration of external air quality sources",
                version="0.1.0"
            )
            self.app.state.components = components

            self.app.include_router(source_router, prefix="/api/v1")
            self.app.include_router(station_router, prefix="/api/v1")

            return self.app
        except Exception:
            raise InitializationError(f"Failed to initialize API server: {traceback.format_exc()}")

    async def start(self):
        """Start the API server"""
        if not self.app:
            raise InitializationError("API server started before initialization")

        hypercorn_config = HyperConfig()
        try:
            host = self.config['api']['host']
            port = self.config['api']['port']
            hypercorn_config.bind = [f"{host}:{port}"]

            async def shutdown_trigger():
                await self.shutdown_event.wait()
                return

            self.logger.info(f"Starting API server on {host}:{port}")
            await serve(self.app, hypercorn_config, shutdown_trigger=shutdown_trigger)
        except Exception:
            self.logger.error(f"Failed to start API server: {traceback.format_exc()}")
            raise


class AirIngestApp:
    """Main ingestion service application class"""

    def __init__(self, config_path: str):
        self.logger = get_logger("Main App")
        try:
            self.config = ConfigManager.load_config(config_path)
            setup_logging(self.config.get('logging', {}))
            self.settings = ConfigManager.ingestion_settings(self.config)
            self.db_settings = ConfigManager.database_settings(self.config)
        except ConfigurationError:
            self.logger.error(f"Configuration error: {traceback.format_exc()}")
            sys.exit(1)

        self._shutting_down = False

        # Loop-bound objects, created by prepare() once the event loop is running
        self.shutdown_event: Optional[asyncio.Event] = None
        self.event_manager: Optional[EventManager] = None
        self.api_server: Optional[APIServer] = None

        # Components to be initialized later
        self.db: Optional[IngestDatabase] = None
        self.rest: Optional[RestAPIAdapter] = None
        self.registry: Optional[SourceRegistry] = None
        self.resolver: Optional[MappingResolver] = None
        self.normalizer: Optional[Normalizer] = None
        self.broker_manager: Optional[BrokerIngestionManager] = None
        self.puller: Optional[ScheduledPuller] = None
        self._event_task: Optional[asyncio.Task] = None

    async def prepare(self):
        """Create the objects that belong to the running event loop"""
        if self.shutdown_event is None:
            self.shutdown_event = asyncio.Event()
            self.event_manager = EventManager()
            self.api_server = APIServer(self.config, self.shutdown_event)

    async def initialize_components(self):
        """Initialize all application components"""
        try:
            await self.prepare()
            self._event_task = asyncio.create_task(self.event_manager.process_events())

            self.db = IngestDatabase(self.db_settings.path, self.db_settings.max_connections)
            await self.db.initialize()

            self.rest = RestAPIAdapter(timeout_seconds=self.settings.http_timeout)
            await self.rest.connect()

            self.registry = SourceRegistry(self.db.sources, self.settings.failure_threshold)
            seeded = await self.registry.sync_from_config(self.settings.sources)
            if seeded:
                self.logger.info(f"{len(seeded)} sources configured")

            self.resolver = MappingResolver(MappingCache(), self.rest)
            enrichment = None
            if self.settings.openaq.enabled:
                enrichment = OpenAQClient(self.rest, self.settings.openaq)
                for location_id, mapping in self.settings.openaq.sensor_maps.items():
                    self.resolver.register_static(OpenAQClient.location_key(location_id), mapping)
            self.normalizer = Normalizer(self.resolver, enrichment)

            self.broker_manager = BrokerIngestionManager(
                self.registry,
                self.normalizer,
                self.db.observations,
                self.db.stations,
                self.event_manager,
                reconcile_interval=self.settings.reconcile_interval,
                connection_options={
                    'client_prefix': self.settings.client_prefix,
                    'reconnect_interval': self.settings.reconnect_delay,
                    'message_queue_size': self.settings.message_queue_size,
                }
            )
            self.puller = ScheduledPuller(
                self.registry,
                self.normalizer,
                self.rest,
                self.db.observations,
                self.db.stations,
                self.event_manager,
                tick_interval=self.settings.poll_tick_interval
            )

            await self.api_server.initialize(self)
            self.logger.info("All components initialized successfully")
        except Exception:
            raise InitializationError(f"Failed to initialize components: {traceback.format_exc()}")

    async def shutdown(self):
        """Gracefully shutdown all components"""
        if self._shutting_down:
            return
        self._shutting_down = True
        self.logger.info("Initiating shutdown sequence")
        if self.shutdown_event:
            self.shutdown_event.set()
        try:
            if self.broker_manager:
                await self.broker_manager.stop()
            if self.rest:
                await self.rest.disconnect()
            if self._event_task:
                self._event_task.cancel()
            if self.db:
                await self.db.close()
            self.logger.info("Shutdown completed successfully")
        except Exception:
            self.logger.error(f"Error during shutdown: {traceback.format_exc()}")

    def handle_signals(self):
        """Set up signal handlers for graceful shutdown"""
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            self.logger.info(f"Received signal {signum}")
            self.shutdown_event.set()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler, sig)

    async def run(self):
        """Main application entry point"""
        try:
            await self.prepare()
            self.handle_signals()
            await self.initialize_components()

            await asyncio.gather(
                self.broker_manager.run(self.shutdown_event),
                self.puller.run(self.shutdown_event),
                self.api_server.start()
            )
            await self.shutdown()
        except InitializationError:
            self.logger.error(f"Initialization error: {traceback.format_exc()}")
            await self.shutdown()
            sys.exit(1)
        except Exception:
            self.logger.error(f"Unexpected error: {traceback.format_exc()}")
            await self.shutdown()
            sys.exit(1)


def create_default_config(config_path: Path):
    """Create default configuration file if it doesn't exist"""
    if not config_path.exists():
        example_config = """
api:
  host: "0.0.0.0"
  port: 8000

database:
  path: "air_ingest.db"
  max_connections: 5

ingestion:
  reconcile_interval: 30
  poll_tick_interval: 60
  failure_threshold: 5
  reconnect_delay: 5
  http_timeout: 15
  message_queue_size: 1000
  sources:
    - name: "Hanoi city sensor"
      kind: "pull"
      station_id: "hn-01"
      latitude: 21.0285
      longitude: 105.8542
      url: "https://example.org/air/hanoi.json"
      interval_minutes: 60
      payload_format: "adhoc"
      field_mappings:
        pm25: "$.pm2_5"
        pm10: "$.pm10"
        timestamp: "$.ts"
    - name: "Campus broker"
      kind: "push"
      broker_host: "localhost"
      broker_port: 1883
      topic: "sensors/+/air"
      latitude: 21.0
      longitude: 105.8
  openaq:
    enabled: false
    base_url: "https://api.openaq.org/v3"
    api_key: ""
    sensor_maps: {}

logging:
  level: "INFO"
  file: "logs/air_ingest.log"
  max_size: 10
  backup_count: 5
  format: "%(asctime)s - %(name)s - [%(levelname)s] - %(message)s"
"""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(example_config)
        print(f"Created default config at {config_path}")


def main():
    """Application entry point"""
    config_path = Path(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_CONFIG_PATH)
    create_default_config(config_path)

    app = AirIngestApp(str(config_path))
    asyncio.run(app.run())


if __name__ == "__main__":
    main()
