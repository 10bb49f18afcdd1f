import asyncio

from fastapi import APIRouter, HTTPException
from starlette.responses import StreamingResponse

from ..notifications import NotificationSink, get_sink

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


async def _notification_stream(sink: NotificationSink):
    queue = sink.subscribe()
    try:
        for entry in sink.active():
            yield f"data: {entry.model_dump_json()}\n\n"

        while True:
            try:
                entry = await asyncio.wait_for(queue.get(), timeout=30)
                yield f"data: {entry.model_dump_json()}\n\n"
            except asyncio.TimeoutError:
                # Keepalive
                yield ": keepalive\n\n"
    finally:
        sink.unsubscribe(queue)


@router.get("")
async def list_notifications():
    return {"notifications": [n.model_dump() for n in get_sink().active()]}


@router.get("/stream")
async def stream_notifications():
    return StreamingResponse(
        _notification_stream(get_sink()),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.delete("/{notification_id}")
async def dismiss_notification(notification_id: str):
    if not get_sink().dismiss(notification_id):
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"status": "ok"}
