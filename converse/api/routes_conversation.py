from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from ..conversation.models import ConversationSummary
from ..conversation.reconciler import get_reconciler
from ..llm.base import GenerationError

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


class RenameConversationRequest(BaseModel):
    title: str


@router.get("")
async def list_conversations():
    store = get_reconciler().store
    return {
        "active_id": store.active_id,
        "conversations": [
            ConversationSummary.of(c).model_dump() for c in store.list_conversations()
        ],
    }


@router.post("/new")
async def new_conversation():
    """Clear the active pointer; the next message starts a fresh conversation."""
    get_reconciler().store.clear_active()
    return {"active_id": None}


@router.get("/{conv_id}")
async def get_conversation(conv_id: str):
    conv = get_reconciler().store.get_conversation(conv_id)
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"conversation": conv.model_dump()}


@router.post("/{conv_id}/select")
async def select_conversation(conv_id: str):
    if not get_reconciler().store.select(conv_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"active_id": conv_id}


@router.put("/{conv_id}")
async def rename_conversation(conv_id: str, req: RenameConversationRequest):
    store = get_reconciler().store
    title = req.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="Title must not be empty")
    if not store.rename_conversation(conv_id, title):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"conversation": ConversationSummary.of(store.get_conversation(conv_id)).model_dump()}


@router.post("/{conv_id}/pin")
async def toggle_pin(conv_id: str):
    pinned = get_reconciler().store.toggle_pin(conv_id)
    if pinned is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"is_pinned": pinned}


@router.delete("/{conv_id}")
async def delete_conversation(conv_id: str):
    if get_reconciler().delete_conversation(conv_id):
        return {"status": "deleted"}
    raise HTTPException(status_code=404, detail="Conversation not found")


@router.get("/{conv_id}/messages/{message_id}/video")
async def get_video(conv_id: str, message_id: str):
    """Stream a generated video; the stored URL never carries credentials."""
    reconciler = get_reconciler()
    message = reconciler.store.get_message(conv_id, message_id)
    if not message or not message.video_url:
        raise HTTPException(status_code=404, detail="Video not found")
    if reconciler.gateway is None:
        raise HTTPException(status_code=400, detail="No Gemini API key configured.")
    try:
        content = await reconciler.gateway.download_video(message.video_url)
    except GenerationError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return Response(content=content, media_type="video/mp4")
