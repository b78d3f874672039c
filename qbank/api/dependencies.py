"""
Shared state providers for the API routers.

The work queue and rate limit store are process-wide, but routers only see
them through these providers so tests can swap them with
``app.dependency_overrides``.
"""
from functools import lru_cache

from qbank.core.config import settings
from qbank.core.rate_limit import InMemoryRateLimitStore, RateLimitStore
from qbank.domain.imports.tasks import ImportTaskQueue

ALLOWED_EXTENSIONS = (".csv",)


@lru_cache(maxsize=1)
def get_import_queue() -> ImportTaskQueue:
    return ImportTaskQueue(settings.import_queue_workers)


@lru_cache(maxsize=1)
def get_rate_limit_store() -> RateLimitStore:
    return InMemoryRateLimitStore(
        max_requests=settings.import_rate_limit_max_requests,
        window_seconds=settings.import_rate_limit_window_seconds,
    )
