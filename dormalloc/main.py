from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .config import get_settings
from .db import lifespan_db
from .redis_client import close_redis
from .api.routers import health as health_router
from .api.routers import registrations as registrations_router
from .api.routers import inventory as inventory_router
from .api.routers import events as events_router
from .api.routers import metrics as metrics_router
from .observability.logging import setup_logging
from .middleware.request_context import RequestContextMiddleware
from .observability.metrics import MetricsHTTPMiddleware

settings = get_settings()
setup_logging()


@asynccontextmanager
async def lifespan(_: FastAPI):
    async with lifespan_db():
        yield
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_ORIGIN],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[settings.REQUEST_ID_HEADER],
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(MetricsHTTPMiddleware)

    app.include_router(health_router.router)
    app.include_router(registrations_router.router)
    app.include_router(inventory_router.router)
    app.include_router(events_router.router)
    app.include_router(metrics_router.router)

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("dormalloc.main:app", host=settings.APP_HOST, port=settings.APP_PORT, reload=settings.DEBUG)
