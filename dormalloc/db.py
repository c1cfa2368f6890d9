import logging, time
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy import text, event
from contextlib import asynccontextmanager
from .config import get_settings

log = logging.getLogger("dormalloc.sql")
S = get_settings()

engine = create_async_engine(
    S.DATABASE_URL,
    future=True,
    pool_pre_ping=True,
)

SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@asynccontextmanager
async def lifespan_db():
    # Place for startup checks if needed
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        yield
    finally:
        await engine.dispose()


async def db_health() -> bool:
    try:
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False


async def get_db() -> AsyncSession:
    async with SessionLocal() as session:
        yield session


if engine.dialect.name == "sqlite":
    # SQLite has no row locks: take the database write lock at BEGIN so that
    # read-then-write transactions serialize instead of failing on upgrade.
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@event.listens_for(engine.sync_engine, "before_cursor_execute")
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    context._query_start_time = time.perf_counter()

@event.listens_for(engine.sync_engine, "after_cursor_execute")
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    elapsed_ms = int((time.perf_counter() - getattr(context, "_query_start_time", time.perf_counter())) * 1000)
    if elapsed_ms >= S.SLOW_QUERY_MS:
        log.warning("slow_query", extra={"elapsed_ms": elapsed_ms, "sql": statement[:200]})
