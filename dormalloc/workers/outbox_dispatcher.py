from __future__ import annotations
import asyncio
import json
import logging
from datetime import datetime, timezone

import sqlalchemy as sa
from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import SessionLocal
from ..models import EventsOutbox
from ..redis_client import redis
from ..observability.heartbeat import beat
from ..observability.logging import setup_logging

log = logging.getLogger("dormalloc.worker.outbox")

BATCH = 100
SLEEP_EMPTY = 1.0  # seconds
SLEEP_ERROR = 2.0


async def publish_once(db: AsyncSession) -> int:
    rows = await db.execute(
        select(EventsOutbox)
        .where(EventsOutbox.sent_at.is_(None), EventsOutbox.available_at <= sa.func.now())
        .order_by(EventsOutbox.id.asc())
        .limit(BATCH)
        .with_for_update(skip_locked=True)
    )
    events = list(rows.scalars().all())
    if not events:
        await db.rollback()
        return 0

    count = 0
    for evt in events:
        evt.attempts = (evt.attempts or 0) + 1
        try:
            await redis.publish(evt.channel, json.dumps(evt.payload))
        except RedisError as e:
            # leave sent_at NULL so the next pass retries it
            evt.error = str(e)
            continue
        evt.sent_at = datetime.now(timezone.utc)
        evt.error = None
        count += 1
    await db.commit()
    return count


async def run_forever():
    while True:
        try:
            async with SessionLocal() as db:
                sent = await publish_once(db)
            await asyncio.sleep(SLEEP_EMPTY if sent == 0 else 0.05)
        except Exception:
            log.exception("outbox dispatch failed")
            await asyncio.sleep(SLEEP_ERROR)


async def amain():
    asyncio.create_task(beat("hb:outbox_dispatcher:global"))
    await run_forever()


def main():
    setup_logging()
    asyncio.run(amain())


if __name__ == "__main__":
    main()
