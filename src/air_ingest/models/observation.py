from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from ..utils.helpers import ENTITY_TYPE, as_utc, utcnow

NGSI_LD_CONTEXT = [
    "https://smartdatamodels.org/context.jsonld",
    {"sosa": "http://www.w3.org/ns/sosa/"},
]


class ParameterValue(BaseModel):
    value: float
    unit_code: str
    observed_at: datetime


class Location(BaseModel):
    lat: float
    lon: float


class Provenance(BaseModel):
    source_id: Optional[str] = None
    source_name: str = ""
    source_url: str = ""
    fetched_at: datetime = Field(default_factory=utcnow)


class Observation(BaseModel):
    """A canonical reading for one station at one timestamp"""
    id: str
    type: str = ENTITY_TYPE
    station_id: str
    location: Optional[Location] = None
    observed_at: datetime
    parameters: Dict[str, ParameterValue] = Field(default_factory=dict)
    provenance: Provenance = Field(default_factory=Provenance)

    def to_wire(self) -> Dict[str, Any]:
        """NGSI-LD shaped entity handed to storage consumers and subscribers"""
        entity: Dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "@context": NGSI_LD_CONTEXT,
            "stationId": self.station_id,
            "dateObserved": {
                "type": "Property",
                "value": as_utc(self.observed_at).isoformat(),
            },
            "sosa:observedProperty": {"type": "Relationship", "object": "AirQuality"},
            "externalMetadata": {
                "sourceName": self.provenance.source_name,
                "sourceUrl": self.provenance.source_url,
                "fetchedAt": as_utc(self.provenance.fetched_at).isoformat(),
            },
        }
        if self.provenance.source_id:
            entity["sosa:madeBySensor"] = {
                "type": "Relationship",
                "object": f"urn:ngsi-ld:Source:{self.provenance.source_id}",
            }
        if self.location:
            entity["location"] = {
                "type": "GeoProperty",
                "value": {"type": "Point", "coordinates": [self.location.lon, self.location.lat]},
            }
        for name, param in self.parameters.items():
            entity[name] = {
                "type": "Property",
                "value": param.value,
                "unitCode": param.unit_code,
                "observedAt": as_utc(param.observed_at).isoformat(),
            }
        return entity


class Station(BaseModel):
    station_id: str
    name: str
    latitude: float = 0.0
    longitude: float = 0.0
    type: str = "external-http"
    is_active: bool = True
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)
