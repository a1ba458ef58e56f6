from enum import Enum
from datetime import datetime
from typing import Dict, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from ..utils.helpers import generate_station_id, utcnow


class SourceKind(str, Enum):
    PUSH = "push"
    PULL = "pull"


class PayloadFormat(str, Enum):
    CANONICAL = "canonical"  # NGSI-LD AirQualityObserved entity (or array)
    ADHOC = "adhoc"          # arbitrary JSON, fields picked by path expressions


class Source(BaseModel):
    """A configured origin of readings, either a broker connection or a polled endpoint"""
    id: Optional[str] = None
    name: str
    kind: SourceKind
    station_id: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    # push
    broker_host: Optional[str] = None
    broker_port: int = 1883
    topic: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = False

    # pull
    url: Optional[str] = None
    interval_minutes: int = Field(60, ge=1)
    headers: Dict[str, str] = Field(default_factory=dict)
    payload_format: PayloadFormat = PayloadFormat.CANONICAL
    field_mappings: Dict[str, str] = Field(default_factory=dict)

    # mapping / enrichment
    channel_map: Dict[str, str] = Field(default_factory=dict)
    metadata_url: Optional[str] = None
    enrichment_location_id: Optional[int] = None

    # runtime state, owned by the registry
    is_active: bool = True
    failure_count: int = 0
    last_error: Optional[str] = None
    last_success_at: Optional[datetime] = None
    message_count: int = 0
    last_message_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator('latitude')
    def validate_latitude(cls, v):
        if v is not None and not -90 <= v <= 90:
            raise ValueError(f"Latitude {v} is out of range")
        return v

    @field_validator('longitude')
    def validate_longitude(cls, v):
        if v is not None and not -180 <= v <= 180:
            raise ValueError(f"Longitude {v} is out of range")
        return v

    @model_validator(mode='after')
    def check_kind_settings(self):
        if self.kind == SourceKind.PUSH:
            if not self.broker_host or not self.topic:
                raise ValueError("push sources need broker_host and topic")
        else:
            if not self.url:
                raise ValueError("pull sources need a url")
            if self.payload_format == PayloadFormat.ADHOC and not self.field_mappings:
                raise ValueError("adhoc pull sources need field_mappings")
        if not self.station_id:
            self.station_id = generate_station_id(self.name)
        return self

    @property
    def endpoint(self) -> str:
        if self.kind == SourceKind.PUSH:
            return f"mqtt://{self.broker_host}:{self.broker_port}/{self.topic}"
        return self.url

    @property
    def station_type(self) -> str:
        return "external-mqtt" if self.kind == SourceKind.PUSH else "external-http"

    @property
    def mapping_location_key(self) -> Optional[str]:
        """Key under which this source's channel mapping lives, None when it has none"""
        if self.channel_map or self.metadata_url:
            return f"source:{self.id or self.station_id}"
        return None
