from typing import Dict, Any, Optional, Generic, TypeVar
import aiosqlite
import asyncio
from contextlib import asynccontextmanager
from datetime import datetime
from abc import ABC, abstractmethod

from ..utils.logging import get_logger
from ..utils.helpers import as_utc
from ..utils.exceptions import ConnectionPoolError


logger = get_logger(__name__)

T = TypeVar('T')

# Fixed width so that lexical order equals chronological order
DB_TIME_FORMAT = "%Y-%m-%dT%H:%M:%S.%f+00:00"


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return as_utc(value).strftime(DB_TIME_FORMAT)


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class ConnectionPool:
    """Manages a pool of database connections"""
    def __init__(self, db_path: str, max_connections: int = 5):
        self.db_path = db_path
        # every ":memory:" connection is its own database
        self.max_connections = 1 if db_path == ":memory:" else max_connections
        self._pool: asyncio.Queue = asyncio.Queue(maxsize=self.max_connections)
        self._active_connections = 0
        self._lock = asyncio.Lock()

    async def _open(self) -> aiosqlite.Connection:
        conn = await aiosqlite.connect(self.db_path)
        if self.db_path != ":memory:":
            await conn.execute('PRAGMA journal_mode=WAL')
        await conn.execute('PRAGMA busy_timeout=5000')
        conn.row_factory = aiosqlite.Row
        return conn

    async def initialize(self):
        """Initialize the connection pool"""
        logger.info(f"Initializing connection pool for {self.db_path} with {self.max_connections} connections")
        try:
            for _ in range(self.max_connections):
                await self._pool.put(await self._open())
                self._active_connections += 1
        except Exception as e:
            logger.error(f"Failed to initialize connection pool: {e}")
            raise ConnectionPoolError(f"Connection pool initialization failed: {e}")

    @asynccontextmanager
    async def acquire(self):
        """Acquire a connection from the pool"""
        connection = None
        try:
            async with self._lock:
                if self._pool.empty() and self._active_connections < self.max_connections:
                    connection = await self._open()
                    self._active_connections += 1
                else:
                    try:
                        connection = await asyncio.wait_for(self._pool.get(), timeout=5.0)
                    except asyncio.TimeoutError:
                        raise ConnectionPoolError("Timeout waiting for database connection")

            yield connection

        finally:
            if connection:
                try:
                    self._pool.put_nowait(connection)
                except asyncio.QueueFull:
                    logger.error("Connection pool overflow, closing surplus connection")
                    await connection.close()
                    async with self._lock:
                        self._active_connections -= 1

    async def close(self):
        """Close all connections in the pool"""
        while not self._pool.empty():
            conn = await self._pool.get()
            await conn.close()
        self._active_connections = 0


class BaseRepository(ABC, Generic[T]):
    """Abstract base class for table-backed repositories"""
    def __init__(self, pool: ConnectionPool):
        self.pool = pool
        self.table_name: str = ""  # Must be set by implementing classes

    @abstractmethod
    async def create_table(self) -> None:
        """Create the repository's table"""
        pass

    async def create_indices(self) -> None:
        """Create indices for the repository's table"""
        pass

    async def count(self) -> int:
        async with self.pool.acquire() as conn:
            async with conn.execute(f'SELECT COUNT(*) FROM {self.table_name}') as cursor:
                row = await cursor.fetchone()
                return row[0]

    @abstractmethod
    def _row_to_model(self, row: Dict[str, Any]) -> T:
        """Convert a database row to a model object"""
        pass
