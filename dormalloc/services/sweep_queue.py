from __future__ import annotations
import logging
from datetime import datetime, timezone

from redis.exceptions import RedisError

from ..redis_client import redis, SWEEP_STREAM
from ..observability.metrics import SWEEPS_REQUESTED

log = logging.getLogger("dormalloc.sweep_queue")

# the worker coalesces a batch into one pass; older triggers are redundant
STREAM_MAXLEN = 1000


async def enqueue_sweep(reason: str) -> None:
    await redis.xadd(
        SWEEP_STREAM,
        fields={
            "reason": reason,
            "ts": datetime.now(timezone.utc).isoformat(),
        },
        maxlen=STREAM_MAXLEN,
        approximate=True,
    )
    SWEEPS_REQUESTED.labels(reason=reason).inc()


async def request_sweep(reason: str) -> bool:
    """Enqueue after a commit. A lost trigger is picked up by the idle poll."""
    try:
        await enqueue_sweep(reason)
        return True
    except RedisError as e:
        log.warning("could not enqueue sweep (%s): %s", reason, e)
        return False
