from ..storage.database import ConnectionPool
from ..storage.observation_db import ObservationRepository
from ..storage.source_db import SourceRepository
from ..storage.station_db import StationRepository
from ..utils.logging import get_logger

logger = get_logger(__name__)


class IngestDatabase:
    """Main database manager class"""
    def __init__(self, db_path: str, max_connections: int = 5):
        self.pool = ConnectionPool(db_path, max_connections)
        self.sources = SourceRepository(self.pool)
        self.observations = ObservationRepository(self.pool)
        self.stations = StationRepository(self.pool)
        self.repositories = {
            'sources': self.sources,
            'observations': self.observations,
            'stations': self.stations,
        }

    async def initialize(self) -> None:
        """Initialize the database and all repositories"""
        await self.pool.initialize()
        for repo in self.repositories.values():
            await repo.create_table()
            await repo.create_indices()
        logger.info(f"Database ready: {', '.join(self.repositories)}")

    async def close(self) -> None:
        logger.info("Shutting down database...")
        await self.pool.close()
        logger.info("Database connections closed")
