from typing import List, Optional, Dict, Any
import json
from .database import ConnectionPool, BaseRepository, to_db_time, from_db_time
from ..models.observation import Station
from ..utils.logging import get_logger
from ..utils.exceptions import DatabaseError

logger = get_logger(__name__)


class StationRepository(BaseRepository[Station]):
    """Index of observation origins. The pipeline only ever adds stations."""
    def __init__(self, pool: ConnectionPool):
        super().__init__(pool)
        self.table_name = "stations"

    async def create_table(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute('''
                CREATE TABLE IF NOT EXISTS stations (
                    station_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    latitude REAL NOT NULL DEFAULT 0,
                    longitude REAL NOT NULL DEFAULT 0,
                    type TEXT NOT NULL,
                    is_active BOOLEAN NOT NULL DEFAULT 1,
                    metadata TEXT,
                    created_at TEXT NOT NULL
                )
            ''')
            await conn.commit()

    async def ensure(self, station: Station) -> bool:
        """Insert the station if absent. Returns True when it was created."""
        try:
            async with self.pool.acquire() as conn:
                cursor = await conn.execute('''
                    INSERT OR IGNORE INTO stations
                    (station_id, name, latitude, longitude, type, is_active, metadata, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ''', (
                    station.station_id,
                    station.name,
                    station.latitude,
                    station.longitude,
                    station.type,
                    station.is_active,
                    json.dumps(station.metadata),
                    to_db_time(station.created_at),
                ))
                await conn.commit()
                created = cursor.rowcount == 1
                if created:
                    logger.info(f"Auto-created station {station.station_id} ({station.type}) - {station.name}")
                return created
        except Exception as e:
            logger.error(f"Failed to ensure station {station.station_id}: {e}")
            raise DatabaseError(f"Failed to ensure station: {e}")

    async def get(self, station_id: str) -> Optional[Station]:
        async with self.pool.acquire() as conn:
            async with conn.execute(
                'SELECT * FROM stations WHERE station_id = ?', (station_id,)
            ) as cursor:
                row = await cursor.fetchone()
                return self._row_to_model(dict(row)) if row else None

    async def list_all(self) -> List[Station]:
        async with self.pool.acquire() as conn:
            async with conn.execute('SELECT * FROM stations ORDER BY station_id') as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_model(dict(row)) for row in rows]

    def _row_to_model(self, row: Dict[str, Any]) -> Station:
        return Station(
            station_id=row['station_id'],
            name=row['name'],
            latitude=row['latitude'],
            longitude=row['longitude'],
            type=row['type'],
            is_active=bool(row['is_active']),
            metadata=json.loads(row['metadata']) if row['metadata'] else {},
            created_at=from_db_time(row['created_at'])
        )
