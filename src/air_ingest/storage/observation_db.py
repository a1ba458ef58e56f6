from typing import List, Optional, Dict, Any
from datetime import datetime
import json
from .database import ConnectionPool, BaseRepository, to_db_time
from ..models.observation import Observation
from ..utils.logging import get_logger
from ..utils.exceptions import DatabaseError

logger = get_logger(__name__)


class ObservationRepository(BaseRepository[Observation]):
    """
    Observation store keyed by the canonical entity id.

    ``row_id`` is the internal storage identity. A replace keeps the row_id
    the record was first inserted with.
    """
    def __init__(self, pool: ConnectionPool):
        super().__init__(pool)
        self.table_name = "observations"

    async def create_table(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute('''
                CREATE TABLE IF NOT EXISTS observations (
                    row_id INTEGER PRIMARY KEY AUTOINCREMENT,
                    entity_id TEXT NOT NULL UNIQUE,
                    station_id TEXT NOT NULL,
                    observed_at TEXT NOT NULL,
                    source_id TEXT,
                    document TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            ''')
            await conn.commit()

    async def create_indices(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_obs_station_time
                ON observations(station_id, observed_at)
            ''')
            await conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_obs_time
                ON observations(observed_at)
            ''')
            await conn.commit()

    async def upsert(self, observation: Observation) -> None:
        """Replace the record with the same id, insert when there is none"""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    INSERT INTO observations
                    (entity_id, station_id, observed_at, source_id, document, updated_at)
                    VALUES (?, ?, ?, ?, ?, strftime('%Y-%m-%dT%H:%M:%f', 'now'))
                    ON CONFLICT(entity_id) DO UPDATE SET
                        station_id = excluded.station_id,
                        observed_at = excluded.observed_at,
                        source_id = excluded.source_id,
                        document = excluded.document,
                        updated_at = excluded.updated_at
                ''', (
                    observation.id,
                    observation.station_id,
                    to_db_time(observation.observed_at),
                    observation.provenance.source_id,
                    observation.model_dump_json(),
                ))
                await conn.commit()
                logger.debug(f"Upserted observation {observation.id}")
        except Exception as e:
            logger.error(f"Failed to upsert observation {observation.id}: {e}")
            raise DatabaseError(f"Failed to upsert observation: {e}")

    async def exists(self, entity_id: str) -> bool:
        async with self.pool.acquire() as conn:
            async with conn.execute(
                'SELECT 1 FROM observations WHERE entity_id = ? LIMIT 1', (entity_id,)
            ) as cursor:
                return await cursor.fetchone() is not None

    async def get(self, entity_id: str) -> Optional[Observation]:
        async with self.pool.acquire() as conn:
            async with conn.execute(
                'SELECT * FROM observations WHERE entity_id = ?', (entity_id,)
            ) as cursor:
                row = await cursor.fetchone()
                return self._row_to_model(dict(row)) if row else None

    async def get_row_id(self, entity_id: str) -> Optional[int]:
        async with self.pool.acquire() as conn:
            async with conn.execute(
                'SELECT row_id FROM observations WHERE entity_id = ?', (entity_id,)
            ) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None

    async def query(
        self,
        station_id: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
        limit: Optional[int] = None
    ) -> List[Observation]:
        """
        Observations ordered by observation time.
        Newest first, except for range scans (start_time or end_time given),
        which come back in chronological order.
        """
        clauses = []
        params: List[Any] = []
        if station_id:
            clauses.append('station_id = ?')
            params.append(station_id)
        if start_time:
            clauses.append('observed_at >= ?')
            params.append(to_db_time(start_time))
        if end_time:
            clauses.append('observed_at <= ?')
            params.append(to_db_time(end_time))

        query = 'SELECT * FROM observations'
        if clauses:
            query += ' WHERE ' + ' AND '.join(clauses)
        ranged = start_time is not None or end_time is not None
        query += ' ORDER BY observed_at ' + ('ASC' if ranged else 'DESC')
        if limit is not None:
            query += ' LIMIT ?'
            params.append(limit)

        async with self.pool.acquire() as conn:
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_model(dict(row)) for row in rows]

    def _row_to_model(self, row: Dict[str, Any]) -> Observation:
        return Observation(**json.loads(row['document']))
