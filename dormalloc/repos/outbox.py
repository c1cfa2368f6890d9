from __future__ import annotations
import uuid
from datetime import datetime, timezone
from typing import Iterable
from sqlalchemy.ext.asyncio import AsyncSession
from ..models import EventsOutbox
from ..redis_client import INVENTORY_CHANNEL


async def add_outbox_event(db: AsyncSession, *, channel: str, payload: dict) -> EventsOutbox:
    evt = EventsOutbox(channel=channel, payload=payload)
    db.add(evt)
    # no commit here; caller’s transaction should commit
    return evt


async def add_inventory_event(
    db: AsyncSession,
    event_type: str,
    *,
    resources: Iterable[str],
    **fields,
) -> EventsOutbox:
    """Queue an inventory change for live availability feeds.

    `resources` says which snapshots a subscriber must refresh ("rooms", "tags").
    """
    payload = {
        "type": event_type,
        "resources": sorted(set(resources)),
        "ts": datetime.now(timezone.utc).isoformat(),
    }
    for k, v in fields.items():
        payload[k] = str(v) if isinstance(v, uuid.UUID) else v
    return await add_outbox_event(db, channel=INVENTORY_CHANNEL, payload=payload)
