"""Client for the OpenAQ v3 API, used to fill gaps in primary readings."""
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from .rest import RestAPIAdapter
from ..utils.helpers import parse_timestamp
from ..utils.logging import get_logger
from ..utils.exceptions import PayloadError

logger = get_logger(__name__)

DEFAULT_BASE_URL = "https://api.openaq.org/v3"


class EnrichmentConfig(BaseModel):
    enabled: bool = False
    base_url: str = DEFAULT_BASE_URL
    api_key: Optional[str] = None
    # {location_id: {sensor_id: parameter_name}}, checked before any discovery
    sensor_maps: Dict[str, Dict[str, str]] = Field(default_factory=dict)


class OpenAQClient:
    def __init__(self, rest: RestAPIAdapter, config: EnrichmentConfig):
        self.rest = rest
        self.config = config
        self.base_url = config.base_url.rstrip('/')

    @property
    def headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.config.api_key} if self.config.api_key else {}

    @staticmethod
    def location_key(location_id: int) -> str:
        return f"openaq:{location_id}"

    def metadata_url(self, location_id: int) -> str:
        return f"{self.base_url}/locations/{location_id}"

    async def latest(self, location_id: int) -> List[Dict[str, Any]]:
        """
        Latest value per sensor for a location.
        Each item: {"channel": "<sensorsId>", "value": float|None, "observed_at": datetime|None}
        """
        url = f"{self.base_url}/locations/{location_id}/latest"
        logger.info(f"Fetching OpenAQ latest values for location {location_id}")
        body = await self.rest.get_json(url, headers=self.headers)
        if not isinstance(body, dict):
            raise PayloadError(f"Unexpected OpenAQ response for location {location_id}")

        out = []
        for item in body.get("results") or []:
            sensor_id = item.get("sensorsId")
            if sensor_id is None:
                logger.debug(f"Skipping OpenAQ item without sensorsId: {item}")
                continue
            stamp = (item.get("datetime") or {}).get("utc")
            out.append({
                "channel": str(sensor_id),
                "value": item.get("value"),
                "observed_at": parse_timestamp(stamp),
            })
        logger.debug(f"OpenAQ location {location_id} returned {len(out)} sensor values")
        return out
