# Channel -> parameter mapping cache

from typing import Dict, Any, Optional
from datetime import datetime
import threading
from ..utils.logging import get_logger

logger = get_logger(__name__)


class MappingCache:
    """
    Process-wide cache of channel mappings keyed by source location.

    Entries never expire. They only leave through invalidate()/clear().
    Every access goes through one lock; callers must not hold it across I/O.
    """
    def __init__(self):
        self._mappings: Dict[str, Dict[str, str]] = {}
        self._cached_at: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def get(self, location_key: str) -> Optional[Dict[str, str]]:
        with self._lock:
            mapping = self._mappings.get(location_key)
            return dict(mapping) if mapping is not None else None

    def set_if_absent(self, location_key: str, mapping: Dict[str, str]) -> Dict[str, str]:
        """
        Store a mapping unless the location already has one.
        Returns whichever mapping is cached afterwards.
        """
        with self._lock:
            existing = self._mappings.get(location_key)
            if existing is not None:
                return dict(existing)
            self._mappings[location_key] = dict(mapping)
            self._cached_at[location_key] = datetime.now()
            return dict(mapping)

    def invalidate(self, location_key: str) -> bool:
        with self._lock:
            self._cached_at.pop(location_key, None)
            return self._mappings.pop(location_key, None) is not None

    def clear(self) -> None:
        """Clear all cache entries."""
        with self._lock:
            self._mappings.clear()
            self._cached_at.clear()

    def get_size(self) -> int:
        with self._lock:
            return len(self._mappings)

    def get_stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        with self._lock:
            return {
                "locations": len(self._mappings),
                "channels": sum(len(m) for m in self._mappings.values()),
                "oldest_entry": min(self._cached_at.values()) if self._cached_at else None,
                "newest_entry": max(self._cached_at.values()) if self._cached_at else None
            }
