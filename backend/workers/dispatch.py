"""
Job dispatch.

Services enqueue background work through a JobDispatcher so they never
hold a Redis connection themselves. Jobs are fire-and-forget from the
caller's side; retries belong to the worker.
"""

import logging
from typing import Any, Optional

from arq.connections import ArqRedis, RedisSettings, create_pool

from core.config import get_app_config

logger = logging.getLogger(__name__)


def redis_settings() -> RedisSettings:
    """ARQ connection settings parsed from REDIS_URL."""
    return RedisSettings.from_dsn(get_app_config().redis_url)


class JobDispatcher:
    """Enqueues ARQ jobs by function name."""

    def __init__(self, redis: Optional[ArqRedis] = None):
        self._redis = redis

    async def _pool(self) -> ArqRedis:
        if self._redis is None:
            self._redis = await create_pool(redis_settings())
        return self._redis

    async def dispatch(self, function: str, *args: Any, **kwargs: Any) -> None:
        """Enqueue function(*args, **kwargs) on the worker queue."""
        redis = await self._pool()
        job = await redis.enqueue_job(function, *args, **kwargs)
        logger.debug(f"Enqueued {function} job {job.job_id if job else 'duplicate'}")

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.close()
            self._redis = None
