from redis import asyncio as aioredis
from .config import get_settings

_settings = get_settings()
redis = aioredis.from_url(_settings.REDIS_URL, encoding="utf-8", decode_responses=True)

# Keys / channels shared by the API, services and workers
SWEEP_STREAM = "sweep:inventory:stream"
SWEEP_GROUP = "sweepers"
SWEEP_LOCK = "lock:sweep"
INVENTORY_CHANNEL = "inventory"


async def redis_health() -> bool:
    try:
        pong = await redis.ping()
        return bool(pong)
    except Exception:
        return False


async def close_redis() -> None:
    await redis.aclose()
