from datetime import datetime, timezone
from typing import Any, Optional
import re
import unicodedata

ENTITY_TYPE = "AirQualityObserved"

_SUBSCRIPT_DIGITS = str.maketrans("₀₁₂₃₄₅₆₇₈₉", "0123456789")
_SEPARATORS = re.compile(r"[\s._\-/]+")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_parameter_name(name: str) -> str:
    """
    Canonical form of a parameter/channel name.
    Example: "PM2.5" -> "pm25", "NO₂" -> "no2", "pm2_5" -> "pm25"
    """
    name = str(name).translate(_SUBSCRIPT_DIGITS).lower()
    return _SEPARATORS.sub("", name)


def generate_station_id(name: str) -> str:
    """
    Derive a station id from a human readable source name.
    Example: "Hà Nội - Ocean Park" -> "station-ha-noi-ocean-park"
    """
    decomposed = unicodedata.normalize("NFKD", name.lower())
    ascii_only = "".join(c for c in decomposed if not unicodedata.combining(c))
    # đ has no decomposition
    ascii_only = ascii_only.replace("đ", "d")
    slug = "".join(c for c in ascii_only if c.isalnum() or c in " -")
    slug = re.sub(r"[\s-]+", "-", slug).strip("-")
    return f"station-{slug}" if slug else "station-unknown"


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings and epoch seconds/milliseconds. None when unparsable."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e11 else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return as_utc(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def observation_entity_id(station_id: str, observed_at: datetime) -> str:
    """
    Deterministic observation id, stable per (station, second).
    Format: urn:ngsi-ld:AirQualityObserved:{station_id}:{YYYYmmddHHMMSS}
    """
    stamp = as_utc(observed_at).strftime("%Y%m%d%H%M%S")
    return f"urn:ngsi-ld:{ENTITY_TYPE}:{station_id}:{stamp}"
