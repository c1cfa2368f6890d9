from __future__ import annotations
import asyncio
import json
from typing import AsyncIterator, Literal

from fastapi import APIRouter
from fastapi.responses import StreamingResponse

from ...services.availability import subscribe_availability

router = APIRouter(prefix="/events", tags=["events"])

KEEPALIVE_SEC = 15.0


# SSE frame helper
def _sse(event: str, data) -> bytes:
    return f"event: {event}\ndata: {json.dumps(data, separators=(',',':'), default=str)}\n\n".encode("utf-8")


async def _stream_availability(gender: str, allow_cross_gender: bool) -> AsyncIterator[bytes]:
    queue: asyncio.Queue[bytes] = asyncio.Queue()

    def on_rooms(rooms):
        queue.put_nowait(_sse("rooms", [r.model_dump(mode="json") for r in rooms]))

    def on_tags(tags):
        queue.put_nowait(_sse("tags", [t.model_dump(mode="json") for t in tags]))

    unsubscribe = await subscribe_availability(gender, on_rooms, on_tags, allow_cross_gender=allow_cross_gender)
    try:
        # initial comment to open stream
        yield b": ok\n\n"
        while True:
            try:
                yield await asyncio.wait_for(queue.get(), timeout=KEEPALIVE_SEC)
            except asyncio.TimeoutError:
                yield b": keepalive\n\n"
    finally:
        await unsubscribe()


@router.get("/availability")
async def sse_availability(gender: Literal["Male", "Female"], allow_cross_gender: bool = False):
    return StreamingResponse(_stream_availability(gender, allow_cross_gender), media_type="text/event-stream")
