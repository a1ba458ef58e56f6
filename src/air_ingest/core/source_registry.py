from typing import Any, Dict, Iterable, List, Optional
from datetime import datetime
from ..models.source import Source, SourceKind
from ..storage.source_db import SourceRepository
from ..utils.helpers import utcnow
from ..utils.logging import get_logger
from ..utils.exceptions import SourceNotFoundError

logger = get_logger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5


class SourceRegistry:
    """
    Source definitions plus their activation state and failure counters.

    record_failure() acts as a circuit breaker: once a source accumulates
    ``failure_threshold`` consecutive failures it is deactivated and stays
    that way until an operator reactivates it.
    """
    def __init__(self, repository: SourceRepository, failure_threshold: int = DEFAULT_FAILURE_THRESHOLD):
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be a positive integer")
        self.repository = repository
        self.failure_threshold = failure_threshold

    async def list_active(self, kind: SourceKind) -> List[Source]:
        return await self.repository.list_sources(kind=kind, active_only=True)

    async def list_all(self, kind: Optional[SourceKind] = None) -> List[Source]:
        return await self.repository.list_sources(kind=kind)

    async def get(self, source_id: str) -> Source:
        source = await self.repository.get(source_id)
        if source is None:
            raise SourceNotFoundError(f"Unknown source: {source_id}")
        return source

    async def create(self, source: Source) -> Source:
        created = await self.repository.insert(source)
        logger.info(f"Registered {created.kind.value} source {created.name} ({created.station_id}) -> {created.endpoint}")
        return created

    async def delete(self, source_id: str) -> None:
        if not await self.repository.delete(source_id):
            raise SourceNotFoundError(f"Unknown source: {source_id}")
        logger.info(f"Deleted source {source_id}")

    async def sync_from_config(self, entries: Iterable[Dict[str, Any]]) -> List[Source]:
        """Register configured sources that are not known yet (matched by name)"""
        registered = []
        for entry in entries:
            source = Source(**entry)
            existing = await self.repository.get_by_name(source.name)
            if existing:
                registered.append(existing)
                continue
            registered.append(await self.create(source))
        return registered

    async def record_success(self, source_id: str, at: Optional[datetime] = None) -> None:
        await self.repository.mark_success(source_id, at or utcnow())

    async def record_failure(self, source_id: str, error: str) -> bool:
        """
        Count one failure against the source.
        Returns True when this failure tripped the breaker and deactivated the source.
        """
        state = await self.repository.increment_failure(source_id, error)
        if state is None:
            logger.warning(f"Failure reported for unknown source {source_id}: {error}")
            return False

        failure_count, is_active = state
        logger.debug(f"Source {source_id} failure {failure_count}/{self.failure_threshold}: {error}")
        if is_active and failure_count >= self.failure_threshold:
            if await self.repository.deactivate_if_active(source_id):
                logger.warning(
                    f"Deactivating source {source_id} after {failure_count} consecutive failures. "
                    f"Last error: {error}"
                )
                return True
        return False

    async def deactivate(self, source_id: str) -> bool:
        changed = await self.repository.deactivate_if_active(source_id)
        if changed:
            logger.info(f"Source {source_id} deactivated")
        return changed

    async def reactivate(self, source_id: str) -> None:
        if not await self.repository.reactivate(source_id):
            raise SourceNotFoundError(f"Unknown source: {source_id}")
        logger.info(f"Source {source_id} reactivated, failure counter reset")

    async def record_message(self, source_id: str, at: Optional[datetime] = None) -> None:
        await self.repository.increment_messages(source_id, at or utcnow())
