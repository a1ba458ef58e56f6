# src/air_ingest/api/routes.py
from fastapi import APIRouter, HTTPException
from typing import Any, Dict, List, Optional
from ..models.observation import Station
from ..models.source import Source, SourceKind
from ..utils.logging import get_logger
from ..utils.exceptions import SourceNotFoundError
from .dependencies import DBDependency, RegistryDependency, ResolverDependency

logger = get_logger(__name__)

'''
# Register a polled endpoint
response = await client.post("/api/v1/sources", json={
    "name": "hanoi-city", "kind": "pull", "url": "https://example.org/aq.json",
    "payload_format": "adhoc", "field_mappings": {"pm25": "$.pm2_5", "timestamp": "$.ts"}
})

# Bring a tripped source back
await client.post(f"/api/v1/sources/{source_id}/reactivate")
'''

source_router = APIRouter()
station_router = APIRouter()

# Runtime state is owned by the registry and cannot be set from outside
_READ_ONLY_FIELDS = {
    'id', 'is_active', 'failure_count', 'last_error', 'last_success_at',
    'message_count', 'last_message_at', 'created_at',
}


def source_view(source: Source) -> Dict[str, Any]:
    return source.model_dump(mode='json', exclude={'password'})


@source_router.get("/sources")
async def list_sources(
    registry: RegistryDependency,
    kind: Optional[SourceKind] = None
) -> List[Dict[str, Any]]:
    return [source_view(s) for s in await registry.list_all(kind)]


@source_router.post("/sources", status_code=201)
async def create_source(source: Source, registry: RegistryDependency, db: DBDependency) -> Dict[str, Any]:
    if await db.sources.get_by_name(source.name):
        raise HTTPException(status_code=409, detail=f"A source named {source.name!r} already exists")
    fresh = Source(**source.model_dump(exclude=_READ_ONLY_FIELDS))
    try:
        created = await registry.create(fresh)
    except Exception as e:
        logger.error(f"Error creating source {source.name}: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to create source: {str(e)}")
    return source_view(created)


@source_router.get("/sources/{source_id}")
async def get_source(source_id: str, registry: RegistryDependency) -> Dict[str, Any]:
    try:
        return source_view(await registry.get(source_id))
    except SourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@source_router.post("/sources/{source_id}/reactivate")
async def reactivate_source(source_id: str, registry: RegistryDependency) -> Dict[str, Any]:
    try:
        await registry.reactivate(source_id)
        return source_view(await registry.get(source_id))
    except SourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@source_router.post("/sources/{source_id}/deactivate")
async def deactivate_source(source_id: str, registry: RegistryDependency) -> Dict[str, Any]:
    try:
        source = await registry.get(source_id)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    await registry.deactivate(source.id)
    return source_view(await registry.get(source_id))


@source_router.delete("/sources/{source_id}", status_code=204)
async def delete_source(source_id: str, registry: RegistryDependency) -> None:
    try:
        await registry.delete(source_id)
    except SourceNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@source_router.delete("/mappings")
async def clear_mapping_cache(resolver: ResolverDependency) -> Dict[str, Any]:
    cleared = resolver.cache.get_size()
    resolver.invalidate()
    return {"cleared": cleared}


@station_router.get("/stations", response_model=List[Station])
async def list_stations(db: DBDependency) -> List[Station]:
    try:
        return await db.stations.list_all()
    except Exception as e:
        raise HTTPException(status_code=500, detail=str(e))
