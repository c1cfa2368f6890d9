from __future__ import annotations
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text


async def begin_serializable_tx(db: AsyncSession) -> None:
    """
    Ensure we're not inside an active transaction, then start a new one.

    PostgreSQL: the very first statement is 'SET TRANSACTION ISOLATION LEVEL SERIALIZABLE'.
    SQLite: the engine issues BEGIN IMMEDIATE (see db.py), which is already serial.
    """
    # End any auto-begun tx from earlier reads on the same session (safe if none).
    if db.in_transaction():
        await db.rollback()

    if db.get_bind().dialect.name == "postgresql":
        # This execute will implicitly BEGIN a new tx; SET TRANSACTION is its first statement.
        await db.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))
