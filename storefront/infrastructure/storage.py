"""Storage backend selection.

``settings.storage_backend`` picks PostgreSQL (``postgres``) or the
in-process store (``memory``). The API resolves its unit of work
factory through :func:`get_unit_of_work_factory`, which tests override.
"""

from storefront.application.ports import UnitOfWorkFactory
from storefront.infrastructure.config import settings
from storefront.infrastructure.memory import InMemoryStore

# Global in-memory store instance
_memory_store: InMemoryStore | None = None


def get_memory_store() -> InMemoryStore:
    """Get in-memory store singleton."""
    global _memory_store
    if _memory_store is None:
        _memory_store = InMemoryStore(lock_timeout=settings.lock_timeout_ms / 1000)
    return _memory_store


def reset_memory_store() -> None:
    """Reset in-memory store (for testing)."""
    global _memory_store
    _memory_store = None


def get_unit_of_work_factory() -> UnitOfWorkFactory:
    """Get the unit of work factory of the configured backend.

    Raises:
        ValueError: If the backend name is unknown.
    """
    backend = settings.storage_backend.lower()
    if backend == "memory":
        return get_memory_store().unit_of_work
    if backend == "postgres":
        from storefront.infrastructure.database import get_session_factory
        from storefront.infrastructure.repositories import sqlalchemy_unit_of_work_factory

        return sqlalchemy_unit_of_work_factory(get_session_factory(), settings.lock_timeout_ms)
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")
