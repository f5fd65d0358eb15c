# app/utils/cache_invalidation.py
"""Cache invalidation utilities."""
import logging
from typing import Any, Optional
from ..core.cache import cache, CacheManager

logger = logging.getLogger(__name__)

# List endpoints cached per entity kind; any write to the kind makes them stale
LIST_PATTERNS = {
    "student": ["students:*"],
    "class": ["classes:*", "enrollment_statistics:*"],
    "enrollment": ["enrollments:*", "enrollment_statistics:*"],
}


class CacheInvalidator:
    """Post-commit hook dropping cached views of a changed entity."""

    def __init__(self, cache_manager: Optional[CacheManager] = None):
        self.cache = cache_manager or cache

    async def invalidate(self, entity_kind: str, entity_id: Any) -> None:
        await self.cache.delete(self.cache.make_key(entity_kind, entity_id))
        for pattern in LIST_PATTERNS.get(entity_kind, []):
            await self.cache.delete_pattern(pattern)
        logger.debug(f"Invalidated cache for {entity_kind}:{entity_id}")
