"""Lock ordering and lock-timeout retry.

Every path that locks more than one product must take the product locks
in ascending product id order. Two transactions that follow the same
total order can never wait on each other in a cycle.

Lock hierarchy, outermost first:

    order -> order item -> products (ascending id) -> user -> coupon grant
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from operator import attrgetter
from typing import TypeVar

import structlog

from storefront.domain.exceptions import LockTimeoutError

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


def canonical_lock_order(
    resources: Iterable[T],
    key: Callable[[T], int] = attrgetter("product_id"),
) -> list[T]:
    """Sort resources into the order their locks must be acquired in.

    Duplicate keys keep their relative order, so callers can still
    process several rows of the same product in a stable sequence.

    Args:
        resources: Items, commands or ids to order.
        key: Extracts the lock key (product id by default).

    Returns:
        New list sorted by ascending lock key.
    """
    return sorted(resources, key=key)


async def retry_on_lock_timeout(
    operation: Callable[[], Awaitable[R]],
    max_retries: int = 3,
    initial_delay: float = 0.05,
    backoff_factor: float = 2.0,
) -> R:
    """Run ``operation`` again when it fails on a lock timeout or deadlock.

    Each attempt must open its own transaction so guards are evaluated
    against the state left by whoever held the lock.

    Args:
        operation: Zero-argument coroutine factory running one full attempt.
        max_retries: Retries after the first attempt.
        initial_delay: Seconds to wait before the first retry.
        backoff_factor: Multiplier applied to the delay after each retry.

    Returns:
        Result of the first successful attempt.

    Raises:
        LockTimeoutError: If every attempt timed out.
    """
    delay = initial_delay
    attempt = 0
    while True:
        try:
            return await operation()
        except LockTimeoutError as e:
            if attempt >= max_retries:
                logger.warning(
                    "Lock retries exhausted",
                    resource=e.resource,
                    attempts=attempt + 1,
                )
                raise
            attempt += 1
            logger.info(
                "Lock timeout, retrying",
                resource=e.resource,
                attempt=attempt,
                delay_s=delay,
            )
            await asyncio.sleep(delay)
            delay *= backoff_factor
