from __future__ import annotations
import argparse
import asyncio
import logging
import os
import uuid
from typing import List, Tuple

from redis.exceptions import ResponseError

from ..config import get_settings
from ..redis_client import redis, SWEEP_STREAM, SWEEP_GROUP, SWEEP_LOCK
from ..services.reconciliation import SweepReport, run_sweep
from ..observability.heartbeat import beat
from ..observability.logging import setup_logging

S = get_settings()
log = logging.getLogger("dormalloc.worker.sweep")

LOCK_RETRY_SEC = 1.0


async def _ensure_group() -> None:
    try:
        await redis.xgroup_create(SWEEP_STREAM, SWEEP_GROUP, id="$", mkstream=True)
    except ResponseError as e:
        if "BUSYGROUP" in str(e):
            return
        raise


async def _acquire_lock(token: str) -> bool:
    # only one process sweeps at a time; others keep their triggers pending
    return await redis.set(SWEEP_LOCK, token, ex=S.SWEEP_LOCK_TTL_SEC, nx=True) is True


async def _release_lock(token: str) -> None:
    if await redis.get(SWEEP_LOCK) == token:
        await redis.delete(SWEEP_LOCK)


async def sweep_once(reasons: List[str]) -> SweepReport | None:
    """One single-flight pass. None when another process holds the lock."""
    token = uuid.uuid4().hex
    if not await _acquire_lock(token):
        return None
    try:
        log.info("sweep triggered by %s", ", ".join(sorted(set(reasons))) or "idle poll")
        return await run_sweep()
    finally:
        await _release_lock(token)


async def _read(consumer: str, last_id: str) -> List[Tuple[str, dict]]:
    resp = await redis.xreadgroup(
        SWEEP_GROUP, consumer,
        streams={SWEEP_STREAM: last_id},
        count=S.SWEEP_BATCH,
        block=S.SWEEP_POLL_INTERVAL_SEC * 1000,
    )
    if not resp:
        return []
    _, messages = resp[0]
    return messages


async def worker_loop(consumer: str) -> None:
    await _ensure_group()

    while True:
        # our own unacked triggers first (left over from a busy lock), then new ones
        messages = await _read(consumer, "0") or await _read(consumer, ">")
        reasons = [fields.get("reason", "") for _, fields in messages if fields]

        try:
            report = await sweep_once(reasons)
        except Exception:
            # don't ack so the batch is retried
            log.exception("sweep pass failed")
            await asyncio.sleep(LOCK_RETRY_SEC)
            continue

        if report is None:
            await asyncio.sleep(LOCK_RETRY_SEC)
            continue

        if messages:
            await redis.xack(SWEEP_STREAM, SWEEP_GROUP, *[msg_id for msg_id, _ in messages])


def parse_args():
    p = argparse.ArgumentParser(description="Pending room/tag reconciliation worker")
    p.add_argument("--consumer", default=f"c-{os.getpid()}", help="Consumer name in the group")
    return p.parse_args()


async def amain():
    args = parse_args()
    asyncio.create_task(beat(f"hb:sweep_worker:{args.consumer}"))
    await worker_loop(args.consumer)


def main():
    setup_logging()
    asyncio.run(amain())


if __name__ == "__main__":
    main()
