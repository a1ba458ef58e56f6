from typing import Any, Dict, Optional, Tuple
from datetime import datetime
import math
from ..adapters.openaq import OpenAQClient
from ..core.mapping_resolver import MappingResolver
from ..models.observation import Location, Observation, ParameterValue, Provenance
from ..models.source import Source
from ..utils.helpers import (
    ENTITY_TYPE, normalize_parameter_name, observation_entity_id, parse_timestamp, utcnow
)
from ..utils.json_path import extract
from ..utils.logging import get_logger
from ..utils.exceptions import PayloadError

logger = get_logger(__name__)

# UN/CEFACT common codes
UNIT_MICROGRAM_PER_M3 = "GQ"
UNIT_CELSIUS = "CEL"
UNIT_PERCENT = "P1"
UNIT_HECTOPASCAL = "A97"
UNIT_DIMENSIONLESS = "E30"

_UNIT_TABLE = {
    "pm1": UNIT_MICROGRAM_PER_M3,
    "pm25": UNIT_MICROGRAM_PER_M3,
    "pm10": UNIT_MICROGRAM_PER_M3,
    "o3": UNIT_MICROGRAM_PER_M3,
    "ozone": UNIT_MICROGRAM_PER_M3,
    "no2": UNIT_MICROGRAM_PER_M3,
    "so2": UNIT_MICROGRAM_PER_M3,
    "co": UNIT_MICROGRAM_PER_M3,
    "temperature": UNIT_CELSIUS,
    "temp": UNIT_CELSIUS,
    "humidity": UNIT_PERCENT,
    "relativehumidity": UNIT_PERCENT,
    "pressure": UNIT_HECTOPASCAL,
}

# Names accepted from a mapped push source even when its mapping does not list them
KNOWN_PARAMETERS = frozenset(_UNIT_TABLE) | {"airqualityindex", "aqi", "co2", "no", "nox", "nh3", "bc", "voc"}

ENVELOPE_FIELDS = frozenset({
    "id", "type", "location", "dateObserved", "timestamp", "stationId", "externalMetadata",
})

TIMESTAMP_FIELD = "timestamp"


def unit_for(name: str) -> str:
    """Unit code for a parameter name, dimensionless when the name is unknown"""
    return _UNIT_TABLE.get(normalize_parameter_name(name), UNIT_DIMENSIONLESS)


def is_envelope_field(name: str) -> bool:
    return name in ENVELOPE_FIELDS or name.startswith("@") or name.startswith("sosa:")


def coerce_number(raw: Any) -> Optional[float]:
    """float for numeric input (numeric strings included), None for anything else"""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError:
            return None
    else:
        return None
    return value if math.isfinite(value) else None


def split_property(raw: Any) -> Tuple[Any, Optional[str], Optional[datetime]]:
    """
    Accepts a bare number or an NGSI-LD property object
    {"type": "Property", "value": 12.3, "unitCode": "GQ", "observedAt": "..."}.
    """
    if isinstance(raw, dict):
        return raw.get("value"), raw.get("unitCode"), parse_timestamp(raw.get("observedAt"))
    return raw, None, None


def read_observed_at(entity: Dict[str, Any]) -> Optional[datetime]:
    date = entity.get("dateObserved")
    if isinstance(date, dict):
        date = date.get("value")
    stamp = parse_timestamp(date)
    if stamp is None:
        stamp = parse_timestamp(entity.get(TIMESTAMP_FIELD))
    return stamp


def read_location(entity: Dict[str, Any]) -> Optional[Location]:
    location = entity.get("location")
    if not isinstance(location, dict):
        return None
    value = location.get("value", location)
    coords = value.get("coordinates") if isinstance(value, dict) else None
    if isinstance(coords, (list, tuple)) and len(coords) >= 2:
        lon, lat = coerce_number(coords[0]), coerce_number(coords[1])
        if lon is not None and lat is not None:
            return Location(lat=lat, lon=lon)
    return None


class Normalizer:
    """Turns raw payloads into canonical observations and merges enrichment data into them"""
    def __init__(self, resolver: MappingResolver, enrichment: Optional[OpenAQClient] = None):
        self.resolver = resolver
        self.enrichment = enrichment
        self._registered_sources = set()

    def to_parameter(
        self,
        name: str,
        raw: Any,
        observed_at: datetime,
        unit_code: Optional[str] = None
    ) -> Optional[ParameterValue]:
        """Validated parameter value, or None when the value has to be left out"""
        if raw is None:
            return None
        value = coerce_number(raw)
        if value is None:
            logger.debug(f"Ignoring non-numeric value for {name}: {raw!r}")
            return None
        if value < 0:
            logger.warning(f"Rejecting negative value for {name}: {value}")
            return None
        return ParameterValue(value=value, unit_code=unit_code or unit_for(name), observed_at=observed_at)

    def build_observation(
        self,
        source: Source,
        readings: Dict[str, Any],
        observed_at: datetime,
        entity_id: Optional[str] = None,
        location: Optional[Location] = None,
        units: Optional[Dict[str, str]] = None,
        reading_times: Optional[Dict[str, datetime]] = None
    ) -> Observation:
        units = units or {}
        reading_times = reading_times or {}
        parameters: Dict[str, ParameterValue] = {}
        for name, raw in readings.items():
            param = self.to_parameter(name, raw, reading_times.get(name) or observed_at, units.get(name))
            if param is not None:
                parameters[name] = param

        if location is None and source.latitude is not None and source.longitude is not None:
            location = Location(lat=source.latitude, lon=source.longitude)

        return Observation(
            id=entity_id or observation_entity_id(source.station_id, observed_at),
            station_id=source.station_id,
            location=location,
            observed_at=observed_at,
            parameters=parameters,
            provenance=Provenance(
                source_id=source.id,
                source_name=source.name,
                source_url=source.endpoint,
                fetched_at=utcnow()
            )
        )

    async def channel_mapping(self, source: Source) -> Optional[Dict[str, str]]:
        """Channel mapping for the source, None when the source declares no mapping at all"""
        key = source.mapping_location_key
        if key is None:
            return None
        if source.channel_map and key not in self._registered_sources:
            self.resolver.register_static(key, source.channel_map)
            self._registered_sources.add(key)
        return await self.resolver.resolve_all(key, metadata_url=source.metadata_url, headers=source.headers or None)

    async def from_push_message(self, source: Source, payload: Any) -> Observation:
        if not isinstance(payload, dict):
            raise PayloadError(f"Expected a JSON object from {source.name}, got {type(payload).__name__}")

        observed_at = read_observed_at(payload) or utcnow()
        mapping = await self.channel_mapping(source)

        readings: Dict[str, Any] = {}
        units: Dict[str, str] = {}
        for key, raw in payload.items():
            if is_envelope_field(key):
                continue
            value, unit_code, _ = split_property(raw)
            if isinstance(value, (dict, list)):
                continue

            name = normalize_parameter_name(key)
            if mapping is not None:
                mapped = mapping.get(str(key))
                if mapped:
                    name = mapped
                elif name not in KNOWN_PARAMETERS:
                    logger.debug(f"No mapping for channel {key!r} of {source.name}, skipping")
                    continue
            if not name or name in readings:
                continue
            readings[name] = value
            if unit_code:
                units[name] = unit_code

        observation = self.build_observation(
            source, readings, observed_at, location=None if source.latitude is not None else read_location(payload),
            units=units
        )
        if not observation.parameters:
            raise PayloadError(f"No measurements found in message from {source.name}")
        return observation

    def from_canonical(self, source: Source, entity: Any) -> Observation:
        if not isinstance(entity, dict):
            raise PayloadError("Canonical item is not a JSON object")
        entity_id, entity_type = entity.get("id"), entity.get("type")
        if not entity_id or not isinstance(entity_id, str) or not entity_type:
            raise PayloadError("Canonical item is missing id or type")
        if str(entity_type).lower() != ENTITY_TYPE.lower():
            raise PayloadError(f"Expected type {ENTITY_TYPE!r}, got {entity_type!r}")

        observed_at = read_observed_at(entity)
        if observed_at is None:
            logger.debug(f"No dateObserved on {entity_id} from {source.name}, using wall-clock time")
            observed_at = utcnow()

        readings: Dict[str, Any] = {}
        units: Dict[str, str] = {}
        times: Dict[str, datetime] = {}
        for key, raw in entity.items():
            if is_envelope_field(key):
                continue
            value, unit_code, prop_time = split_property(raw)
            if isinstance(value, (dict, list)):
                continue
            # canonical names are kept as published
            readings[key] = value
            if unit_code:
                units[key] = unit_code
            if prop_time:
                times[key] = prop_time

        return self.build_observation(
            source, readings, observed_at,
            entity_id=entity_id,
            location=read_location(entity),
            units=units,
            reading_times=times
        )

    def from_adhoc(self, source: Source, document: Any) -> Observation:
        readings: Dict[str, Any] = {}
        timestamp_path = None
        for output_name, path in source.field_mappings.items():
            name = normalize_parameter_name(output_name)
            if name == TIMESTAMP_FIELD:
                timestamp_path = path
                continue
            readings[name] = extract(document, path)

        observed_at = None
        if timestamp_path:
            raw_stamp = extract(document, timestamp_path)
            observed_at = parse_timestamp(raw_stamp)
            if observed_at is None:
                logger.debug(f"Timestamp {raw_stamp!r} at {timestamp_path} from {source.name} unusable, using wall-clock time")
        if observed_at is None:
            observed_at = utcnow()

        observation = self.build_observation(source, readings, observed_at)
        if not observation.parameters:
            raise PayloadError(f"None of the mapped fields of {source.name} held a usable value")
        return observation

    def merge(self, primary: Observation, secondary: Dict[str, ParameterValue]) -> Observation:
        """
        Fill parameters absent from the primary reading. Primary values are never replaced.
        Presence is decided on normalized names, so "relativeHumidity" blocks "relativehumidity".
        """
        merged = dict(primary.parameters)
        present = {normalize_parameter_name(name) for name in merged}
        for name, param in secondary.items():
            key = normalize_parameter_name(name)
            if key in present:
                continue
            if param.value < 0:
                logger.warning(f"Rejecting negative enrichment value for {name}: {param.value}")
                continue
            merged[name] = param
            present.add(key)
        return primary.model_copy(update={"parameters": merged})

    async def enrich(self, observation: Observation, source: Source) -> Observation:
        """Merge third-party values for the source's enrichment location, if it has one"""
        location_id = source.enrichment_location_id
        if self.enrichment is None or location_id is None:
            return observation

        try:
            items = await self.enrichment.latest(location_id)
            mapping = await self.resolver.resolve_all(
                OpenAQClient.location_key(location_id),
                metadata_url=self.enrichment.metadata_url(location_id),
                headers=self.enrichment.headers
            )
        except Exception as e:
            logger.warning(f"Enrichment for {observation.id} failed, keeping primary data only: {e}")
            return observation

        secondary: Dict[str, ParameterValue] = {}
        for item in items:
            name = mapping.get(item["channel"])
            if not name or name in secondary:
                continue
            param = self.to_parameter(name, item["value"], item["observed_at"] or observation.observed_at)
            if param is not None:
                secondary[name] = param

        merged = self.merge(observation, secondary)
        added = len(merged.parameters) - len(observation.parameters)
        if added:
            logger.info(f"Enriched {observation.id} with {added} parameters from location {location_id}")
        return merged
