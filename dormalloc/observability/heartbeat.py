from __future__ import annotations
import asyncio
import logging
from datetime import datetime, timezone

from redis.exceptions import RedisError

from ..redis_client import redis

log = logging.getLogger("dormalloc.heartbeat")


async def beat(key: str, interval_sec: int = 5, ttl_sec: int = 20):
    """Refresh `key` with the current time so ops can see the worker is alive."""
    while True:
        try:
            await redis.set(key, datetime.now(timezone.utc).isoformat(), ex=ttl_sec)
        except RedisError as e:
            log.warning("heartbeat %s failed: %s", key, e)
        await asyncio.sleep(interval_sec)
