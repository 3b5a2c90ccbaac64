"""Product read-cache and its post-commit invalidation.

Provides:
- An in-memory product detail cache with TTL
- A stock change sink that evicts cache entries after a commit
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

logger = structlog.get_logger()


@dataclass
class CachedProduct:
    """A cached product detail payload.

    Attributes:
        product_id: Product identifier.
        payload: Serialized product detail.
        cached_at: When the entry was stored.
        expires_at: When the entry stops being served.
    """

    product_id: int
    payload: dict[str, Any]
    cached_at: datetime
    expires_at: datetime


class ProductDetailCache:
    """In-memory product detail cache.

    Readers repopulate entries on a miss; stock changes evict them.
    """

    def __init__(self, ttl_seconds: int = 300) -> None:
        """Initialize cache.

        Args:
            ttl_seconds: Time-to-live for cached entries in seconds.
        """
        self._entries: dict[int, CachedProduct] = {}
        self.ttl_seconds = ttl_seconds

    async def get(self, product_id: int) -> dict[str, Any] | None:
        """Get a cached product detail if present and not expired."""
        cached = self._entries.get(product_id)
        if cached is None:
            return None

        if datetime.now(timezone.utc) > cached.expires_at:
            del self._entries[product_id]
            return None

        return cached.payload

    async def store(self, product_id: int, payload: dict[str, Any]) -> CachedProduct:
        """Store a product detail payload.

        Args:
            product_id: Product identifier.
            payload: Product detail to serve on later reads.

        Returns:
            The cached entry.
        """
        now = datetime.now(timezone.utc)
        cached = CachedProduct(
            product_id=product_id,
            payload=payload,
            cached_at=now,
            expires_at=now + timedelta(seconds=self.ttl_seconds),
        )
        self._entries[product_id] = cached
        return cached

    async def evict(self, product_ids: Sequence[int]) -> int:
        """Drop entries for the given products.

        Returns:
            Number of entries that were present.
        """
        evicted = 0
        for product_id in product_ids:
            if self._entries.pop(product_id, None) is not None:
                evicted += 1
        return evicted

    def __contains__(self, product_id: int) -> bool:
        return product_id in self._entries


class ProductCacheInvalidator:
    """Stock change sink that evicts product detail cache entries."""

    def __init__(self, cache: ProductDetailCache) -> None:
        self.cache = cache

    async def products_changed(self, product_ids: Sequence[int]) -> None:
        evicted = await self.cache.evict(product_ids)
        logger.info(
            "Product cache invalidated",
            product_ids=list(product_ids),
            evicted=evicted,
        )


# Global cache instance
_product_cache: ProductDetailCache | None = None


def get_product_cache() -> ProductDetailCache:
    """Get product detail cache singleton."""
    global _product_cache
    if _product_cache is None:
        from storefront.infrastructure.config import settings

        _product_cache = ProductDetailCache(ttl_seconds=settings.product_cache_ttl_seconds)
    return _product_cache


def reset_product_cache() -> None:
    """Reset product detail cache (for testing)."""
    global _product_cache
    _product_cache = None
