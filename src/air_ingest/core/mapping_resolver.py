from typing import Any, Dict, Optional
from ..adapters.rest import RestAPIAdapter
from ..storage.cache import MappingCache
from ..utils.helpers import normalize_parameter_name
from ..utils.logging import get_logger
from ..utils.retry import async_retry_with_backoff

logger = get_logger(__name__)


def extract_channel_names(metadata: Any) -> Dict[str, str]:
    """
    Read {channel_id: parameter_name} straight from a metadata document.

    Accepts ``{"sensors": [...]}`` or ``{"results": [{"sensors": [...]}]}``
    where each sensor is ``{"id": .., "parameter": {"name": ..}}`` or
    ``{"id": .., "name": ..}``.
    """
    containers = []
    if isinstance(metadata, dict):
        containers.append(metadata)
        containers.extend(r for r in metadata.get("results") or [] if isinstance(r, dict))
    elif isinstance(metadata, list):
        containers.extend(r for r in metadata if isinstance(r, dict))

    mapping: Dict[str, str] = {}
    for container in containers:
        for sensor in container.get("sensors") or []:
            if not isinstance(sensor, dict) or sensor.get("id") is None:
                continue
            parameter = sensor.get("parameter")
            name = parameter.get("name") if isinstance(parameter, dict) else parameter
            name = name or sensor.get("name")
            if not name:
                continue
            normalized = normalize_parameter_name(name)
            if normalized:
                mapping[str(sensor["id"])] = normalized
    return mapping


class MappingResolver:
    """
    Answers "what does channel X measure?" for a source location.

    Order: static configuration, then the shared cache, then a one-off
    discovery request against the location's metadata endpoint whose result
    (every channel it lists) is cached for the lifetime of the process.
    """
    def __init__(self, cache: MappingCache, rest: Optional[RestAPIAdapter] = None):
        self.cache = cache
        self.rest = rest
        self._static: Dict[str, Dict[str, str]] = {}

    def register_static(self, location_key: str, mapping: Dict[Any, str]) -> None:
        self._static[location_key] = {
            str(channel): normalize_parameter_name(name) for channel, name in mapping.items()
        }

    async def resolve(
        self,
        location_key: str,
        channel: Any,
        metadata_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Optional[str]:
        mapping = await self.resolve_all(location_key, metadata_url, headers)
        return mapping.get(str(channel))

    async def resolve_all(
        self,
        location_key: str,
        metadata_url: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None
    ) -> Dict[str, str]:
        """Full channel mapping for a location, empty when nothing is known"""
        static = self._static.get(location_key)
        if static:
            return dict(static)

        cached = self.cache.get(location_key)
        if cached is not None:
            return cached

        if not metadata_url or self.rest is None:
            return {}

        # network I/O happens outside the cache lock; two first-time callers may both fetch
        discovered = await self._discover(location_key, metadata_url, headers)
        if not discovered:
            return {}
        return self.cache.set_if_absent(location_key, discovered)

    def invalidate(self, location_key: Optional[str] = None) -> None:
        if location_key is None:
            self.cache.clear()
            logger.info("Cleared all cached channel mappings")
        elif self.cache.invalidate(location_key):
            logger.info(f"Cleared cached channel mapping for {location_key}")

    async def _discover(self, location_key: str, metadata_url: str, headers: Optional[Dict[str, str]]) -> Dict[str, str]:
        try:
            metadata = await self._fetch_metadata(metadata_url, headers)
        except Exception as e:
            logger.warning(f"Channel discovery for {location_key} failed: {e}")
            return {}

        mapping = extract_channel_names(metadata)
        if mapping:
            logger.info(f"Discovered {len(mapping)} channels for {location_key}: {mapping}")
        else:
            logger.warning(f"No channels found in metadata for {location_key}")
        return mapping

    @async_retry_with_backoff(max_retries=2, base_delay=0.5)
    async def _fetch_metadata(self, metadata_url: str, headers: Optional[Dict[str, str]]) -> Any:
        return await self.rest.get_json(metadata_url, headers=headers)
