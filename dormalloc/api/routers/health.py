from fastapi import APIRouter
from sqlalchemy import select, func

from ...db import db_health, SessionLocal
from ...models import EventsOutbox
from ...redis_client import redis_health

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def health():
    db_ok, redis_ok = await db_health(), await redis_health()
    status = "ok" if (db_ok and redis_ok) else "degraded"
    return {
        "status": status,
        "dependencies": {
            "database": db_ok,
            "redis": redis_ok,
        },
    }


@router.get("/readiness")
async def readiness():
    db_ok, redis_ok = await db_health(), await redis_health()
    outbox_pending = None
    if db_ok:
        async with SessionLocal() as db:
            outbox_pending = (
                await db.execute(select(func.count(EventsOutbox.id)).where(EventsOutbox.sent_at.is_(None)))
            ).scalar_one()
    return {"ready": bool(db_ok and redis_ok), "database": db_ok, "redis": redis_ok, "outbox_pending": outbox_pending}


@router.get("/liveness")
async def liveness():
    return {"alive": True}
