import json
from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..conversation.models import ImageAttachment
from ..conversation.modes import GenerationMode
from ..conversation.reconciler import GenerationHandle, get_reconciler
from ..llm.base import GenerationError

router = APIRouter(prefix="/api/chat", tags=["chat"])


class ImagePayload(BaseModel):
    mime_type: str
    data: str  # base64, no data: prefix


class SendRequest(BaseModel):
    text: str
    mode: GenerationMode = GenerationMode.CHAT
    image: Optional[ImagePayload] = None
    stream: bool = True


async def _event_stream(handle: GenerationHandle):
    yield f"data: {json.dumps({'type': 'start', 'generation': handle.snapshot()})}\n\n"
    async for event in handle.events():
        if event.type == "done":
            payload = {"type": "done", "reason": event.content, "generation": handle.snapshot()}
        else:
            payload = {"type": event.type, "content": event.content}
        yield f"data: {json.dumps(payload)}\n\n"


@router.post("/send")
async def send_message(req: SendRequest):
    if not req.text.strip() and req.image is None:
        raise HTTPException(status_code=400, detail="Message is empty")

    image = None
    if req.image is not None:
        image = ImageAttachment(mime_type=req.image.mime_type, data=req.image.data)

    reconciler = get_reconciler()
    try:
        handle = reconciler.start_generation(req.mode, req.text, image)
    except GenerationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if req.stream:
        return StreamingResponse(
            _event_stream(handle),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    await handle.wait()
    message = reconciler.store.get_message(handle.conversation_id, handle.message_id)
    return {
        "generation": handle.snapshot(),
        "message": message.model_dump() if message else None,
    }


@router.get("/status")
async def chat_status():
    reconciler = get_reconciler()
    return {
        "is_loading": reconciler.is_loading,
        "outstanding": [h.snapshot() for h in reconciler.outstanding()],
    }


@router.get("/generations/{generation_id}")
async def get_generation(generation_id: str):
    handle = get_reconciler().get_handle(generation_id)
    if handle is None:
        raise HTTPException(status_code=404, detail="Generation not found")
    return {"generation": handle.snapshot()}
