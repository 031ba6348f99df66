# leadrelay/services/locks.py
"""
Advisory locks around one (campaign, step) pass of the scheduler.

Only needed when several worker processes run the scheduler against the
same database. A single process uses ``NullLock``.
"""
from __future__ import annotations

import uuid
from typing import Dict, Optional

import redis.asyncio as redis

from leadrelay.core.config import settings
from leadrelay.core.logging import get_structlog_logger

logger = get_structlog_logger(__name__)

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


def lock_key(campaign_id: int, step_id: int) -> str:
    return f"remarketing:lock:{campaign_id}:{step_id}"


class NullLock:
    async def acquire(self, key: str) -> bool:
        return True

    async def release(self, key: str) -> None:
        return None


class RedisLock:
    """``SET NX PX`` lock; release only deletes a key we still own."""

    def __init__(self, client: redis.Redis, ttl_seconds: Optional[int] = None) -> None:
        self.redis = client
        self.ttl_ms = int((ttl_seconds or settings.scheduler_lock_ttl_seconds) * 1000)
        self._tokens: Dict[str, str] = {}

    async def acquire(self, key: str) -> bool:
        token = uuid.uuid4().hex
        try:
            acquired = await self.redis.set(key, token, nx=True, px=self.ttl_ms)
        except redis.RedisError as e:
            logger.error("lock.acquire_error", key=key, error=str(e))
            return False

        if acquired:
            self._tokens[key] = token
            logger.debug("lock.acquired", key=key)
        return bool(acquired)

    async def release(self, key: str) -> None:
        token = self._tokens.pop(key, None)
        if token is None:
            return
        try:
            await self.redis.eval(_RELEASE_SCRIPT, 1, key, token)
        except redis.RedisError as e:
            logger.error("lock.release_error", key=key, error=str(e))
