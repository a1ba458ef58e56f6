from typing import Any, Dict, List
from pydantic import BaseModel, Field

from ..adapters.openaq import EnrichmentConfig


class DatabaseConfig(BaseModel):
    path: str = "air_ingest.db"
    max_connections: int = Field(5, ge=1)


class IngestionConfig(BaseModel):
    """The ``ingestion`` section of the configuration file"""
    reconcile_interval: float = Field(30, gt=0, description="Seconds between broker reconciliation passes")
    poll_tick_interval: float = Field(60, gt=0, description="Seconds between pull sweeps")
    failure_threshold: int = Field(5, ge=1, description="Consecutive failures before a source is deactivated")
    reconnect_delay: float = Field(5, ge=0, description="Fixed delay before a broker reconnect")
    http_timeout: float = Field(15, gt=0, description="Per-request HTTP timeout in seconds")
    message_queue_size: int = Field(1000, ge=1, description="Undelivered messages kept per broker connection")
    client_prefix: str = "air-ingest"
    sources: List[Dict[str, Any]] = Field(default_factory=list)
    openaq: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
