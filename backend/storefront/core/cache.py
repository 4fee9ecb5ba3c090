"""
In-process TTL cache for Shopify catalog reads.

Collections change rarely but are read on every storefront page load, so
product lists are held per store and handle for
``catalog_cache_ttl_seconds``.
"""

import logging
import time
from typing import Any, Dict, Optional, Tuple

from storefront.core.config import settings

logger = logging.getLogger(__name__)


class CatalogCache:
    """Per-key TTL cache bounded to ``max_entries``.

    When full, expired entries are dropped first, then the entry closest to
    expiry.
    """

    def __init__(self, ttl_seconds: Optional[int] = None, max_entries: int = 500):
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.catalog_cache_ttl_seconds
        self.max_entries = max_entries
        self._entries: Dict[str, Tuple[float, Any]] = {}

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return value

    def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        if key not in self._entries and len(self._entries) >= self.max_entries:
            self._make_room()
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        self._entries[key] = (time.monotonic() + ttl, value)

    def _make_room(self) -> None:
        now = time.monotonic()
        for key in [k for k, (expires_at, _) in self._entries.items() if expires_at <= now]:
            del self._entries[key]
        if len(self._entries) >= self.max_entries:
            victim = min(self._entries, key=lambda k: self._entries[k][0])
            del self._entries[victim]
            logger.debug(f"Catalog cache full, evicted {victim}")


catalog_cache = CatalogCache()
