# src/air_ingest/api/dependencies.py
from fastapi import Request
from typing import Annotated
from fastapi import Depends
from ..core.mapping_resolver import MappingResolver
from ..core.source_registry import SourceRegistry
from ..storage.ingest_database import IngestDatabase


async def get_db(request: Request) -> IngestDatabase:
    return request.app.state.components.db


async def get_registry(request: Request) -> SourceRegistry:
    return request.app.state.components.registry


async def get_resolver(request: Request) -> MappingResolver:
    return request.app.state.components.resolver

# Type definitions for dependencies
DBDependency = Annotated[IngestDatabase, Depends(get_db)]
RegistryDependency = Annotated[SourceRegistry, Depends(get_registry)]
ResolverDependency = Annotated[MappingResolver, Depends(get_resolver)]
