from typing import List, Optional, Dict, Any, Tuple
from datetime import datetime
import json
import uuid
from .database import ConnectionPool, BaseRepository, to_db_time, from_db_time
from ..models.source import Source, SourceKind
from ..utils.logging import get_logger
from ..utils.exceptions import DatabaseError

logger = get_logger(__name__)

# Columns kept outside of the JSON settings blob because the pipeline mutates them
_STATE_FIELDS = {
    'id', 'name', 'kind', 'station_id', 'is_active', 'failure_count', 'last_error',
    'last_success_at', 'message_count', 'last_message_at', 'created_at',
}


class SourceRepository(BaseRepository[Source]):
    def __init__(self, pool: ConnectionPool):
        super().__init__(pool)
        self.table_name = "sources"

    async def create_table(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute('''
                CREATE TABLE IF NOT EXISTS sources (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    kind TEXT NOT NULL,
                    station_id TEXT NOT NULL,
                    settings TEXT NOT NULL,
                    is_active BOOLEAN NOT NULL DEFAULT 1,
                    failure_count INTEGER NOT NULL DEFAULT 0,
                    last_error TEXT,
                    last_success_at TEXT,
                    message_count INTEGER NOT NULL DEFAULT 0,
                    last_message_at TEXT,
                    created_at TEXT NOT NULL,
                    CONSTRAINT valid_kind CHECK (kind IN ('push', 'pull'))
                )
            ''')
            await conn.commit()

    async def create_indices(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute('''
                CREATE INDEX IF NOT EXISTS idx_sources_kind_active
                ON sources(kind, is_active)
            ''')
            await conn.commit()

    async def insert(self, source: Source) -> Source:
        source = source.model_copy(update={'id': source.id or uuid.uuid4().hex})
        settings = source.model_dump(mode='json', exclude=_STATE_FIELDS)
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    INSERT INTO sources
                    (id, name, kind, station_id, settings, is_active, failure_count,
                     last_error, last_success_at, message_count, last_message_at, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ''', (
                    source.id,
                    source.name,
                    source.kind.value,
                    source.station_id,
                    json.dumps(settings),
                    source.is_active,
                    source.failure_count,
                    source.last_error,
                    to_db_time(source.last_success_at),
                    source.message_count,
                    to_db_time(source.last_message_at),
                    to_db_time(source.created_at),
                ))
                await conn.commit()
            return source
        except Exception as e:
            logger.error(f"Failed to insert source {source.name}: {e}")
            raise DatabaseError(f"Failed to insert source: {e}")

    async def get(self, source_id: str) -> Optional[Source]:
        return await self._fetch_one('SELECT * FROM sources WHERE id = ?', (source_id,))

    async def get_by_name(self, name: str) -> Optional[Source]:
        return await self._fetch_one('SELECT * FROM sources WHERE name = ?', (name,))

    async def list_sources(self, kind: Optional[SourceKind] = None, active_only: bool = False) -> List[Source]:
        clauses, params = [], []
        if kind is not None:
            clauses.append('kind = ?')
            params.append(kind.value)
        if active_only:
            clauses.append('is_active = 1')
        query = 'SELECT * FROM sources'
        if clauses:
            query += ' WHERE ' + ' AND '.join(clauses)
        query += ' ORDER BY created_at, id'
        async with self.pool.acquire() as conn:
            async with conn.execute(query, params) as cursor:
                rows = await cursor.fetchall()
                return [self._row_to_model(dict(row)) for row in rows]

    async def delete(self, source_id: str) -> bool:
        return await self._execute('DELETE FROM sources WHERE id = ?', (source_id,)) > 0

    async def mark_success(self, source_id: str, at: datetime) -> bool:
        return await self._execute('''
            UPDATE sources
            SET failure_count = 0, last_error = NULL, last_success_at = ?
            WHERE id = ?
        ''', (to_db_time(at), source_id)) > 0

    async def increment_failure(self, source_id: str, error: str) -> Optional[Tuple[int, bool]]:
        """Bump the failure counter. Returns (failure_count, is_active) or None if unknown."""
        try:
            async with self.pool.acquire() as conn:
                await conn.execute('''
                    UPDATE sources
                    SET failure_count = failure_count + 1, last_error = ?
                    WHERE id = ?
                ''', (error, source_id))
                await conn.commit()
                async with conn.execute(
                    'SELECT failure_count, is_active FROM sources WHERE id = ?', (source_id,)
                ) as cursor:
                    row = await cursor.fetchone()
                    return (row[0], bool(row[1])) if row else None
        except Exception as e:
            logger.error(f"Failed to record failure for source {source_id}: {e}")
            raise DatabaseError(f"Failed to record failure: {e}")

    async def deactivate_if_active(self, source_id: str) -> bool:
        """Flip is_active off. True only for the call that actually changed it."""
        return await self._execute(
            'UPDATE sources SET is_active = 0 WHERE id = ? AND is_active = 1', (source_id,)
        ) == 1

    async def reactivate(self, source_id: str) -> bool:
        return await self._execute('''
            UPDATE sources
            SET is_active = 1, failure_count = 0, last_error = NULL
            WHERE id = ?
        ''', (source_id,)) > 0

    async def increment_messages(self, source_id: str, at: datetime) -> bool:
        return await self._execute('''
            UPDATE sources
            SET message_count = message_count + 1, last_message_at = ?
            WHERE id = ?
        ''', (to_db_time(at), source_id)) > 0

    async def _fetch_one(self, query: str, params: tuple) -> Optional[Source]:
        async with self.pool.acquire() as conn:
            async with conn.execute(query, params) as cursor:
                row = await cursor.fetchone()
                return self._row_to_model(dict(row)) if row else None

    async def _execute(self, query: str, params: tuple) -> int:
        try:
            async with self.pool.acquire() as conn:
                cursor = await conn.execute(query, params)
                await conn.commit()
                return cursor.rowcount
        except Exception as e:
            logger.error(f"Source update failed: {e}")
            raise DatabaseError(f"Source update failed: {e}")

    def _row_to_model(self, row: Dict[str, Any]) -> Source:
        return Source(
            **json.loads(row['settings']),
            id=row['id'],
            name=row['name'],
            kind=row['kind'],
            station_id=row['station_id'],
            is_active=bool(row['is_active']),
            failure_count=row['failure_count'],
            last_error=row['last_error'],
            last_success_at=from_db_time(row['last_success_at']),
            message_count=row['message_count'],
            last_message_at=from_db_time(row['last_message_at']),
            created_at=from_db_time(row['created_at'])
        )
