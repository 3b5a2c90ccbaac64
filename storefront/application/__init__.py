"""Application layer module.

Contains application services (use cases) that orchestrate
domain logic and infrastructure.
"""

from storefront.application.compensation_service import (
    CompensationResult,
    CompensationService,
    get_compensation_service,
)
from storefront.application.invalidation import (
    ProductCacheInvalidator,
    ProductDetailCache,
    get_product_cache,
)
from storefront.application.locking import canonical_lock_order, retry_on_lock_timeout
from storefront.application.order_query_service import (
    OrderQueryService,
    get_order_query_service,
)

__all__ = [
    "CompensationResult",
    "CompensationService",
    "get_compensation_service",
    "ProductCacheInvalidator",
    "ProductDetailCache",
    "get_product_cache",
    "canonical_lock_order",
    "retry_on_lock_timeout",
    "OrderQueryService",
    "get_order_query_service",
]
