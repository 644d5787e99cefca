"""
Read cache for entity lookups by handle.

Only ``StorageConsistencyMode.DEFAULT`` reads consult the cache. ``STRONG``
reads bypass it and store their fresh result, and every write invalidates the
keys it touched, so a stale entry can live at most ``ttl_seconds``.
"""

from typing import Dict, Tuple, Any
import time

from socialmod.util.logger import get_logger

logger = get_logger("database_cache")

# Stored in place of a missing row so absent entities are cached too
_MISSING = object()


class DatabaseQueryCache:
    """
    TTL cache keyed by strings such as ``"moderation:<handle>"``.

    Entries expire ``ttl_seconds`` after they were set. A TTL of 0 disables
    caching entirely.
    """

    def __init__(self, ttl_seconds: int = 60):
        self._cache: Dict[str, Tuple[float, Any]] = {}
        self._ttl_seconds = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._ttl_seconds > 0

    def lookup(self, cache_key: str) -> Tuple[bool, Any]:
        """
        Look up a cached value.

        Args:
            cache_key: Key of the cached entity

        Returns:
            ``(True, value)`` on a hit (value may be None for a cached
            absent row), ``(False, None)`` on a miss or expiry.
        """
        entry = self._cache.get(cache_key)
        if entry is not None:
            timestamp, result = entry
            if time.monotonic() - timestamp < self._ttl_seconds:
                logger.debug("[CACHE] Hit for key: %s", cache_key)
                return True, (None if result is _MISSING else result)
            del self._cache[cache_key]
            logger.debug("[CACHE] Expired key: %s", cache_key)
        return False, None

    def set(self, cache_key: str, result: Any) -> None:
        """Cache ``result`` (None records an absent row)."""
        if not self.enabled:
            return
        self._cache[cache_key] = (time.monotonic(), _MISSING if result is None else result)
        logger.debug("[CACHE] Set key: %s", cache_key)

    def discard(self, cache_key: str) -> None:
        """Drop exactly one key."""
        if self._cache.pop(cache_key, None) is not None:
            logger.debug("[CACHE] Discarded key: %s", cache_key)
