from typing import Literal

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

from ..conversation.models import Conversation
from ..conversation.reconciler import get_reconciler
from ..drive import DriveClient, DriveError
from ..export import (
    conversation_to_doc_html,
    conversation_to_html,
    conversation_to_json,
    conversation_to_text,
    conversations_to_json,
    export_filename,
)
from ..google_token import GoogleAuthError
from ..notifications import get_sink
from ..preferences import load_preferences

router = APIRouter(prefix="/api/conversations", tags=["export"])

_MEDIA_TYPES = {
    "txt": "text/plain; charset=utf-8",
    "html": "text/html; charset=utf-8",
    "json": "application/json",
}


def _require_conversation(conv_id: str) -> Conversation:
    conv = get_reconciler().store.get_conversation(conv_id)
    if not conv:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conv


def _integration_failure(e: Exception) -> HTTPException:
    get_sink().notify(str(e), "error")
    status = 401 if isinstance(e, GoogleAuthError) else 502
    return HTTPException(status_code=status, detail=str(e))


@router.get("/{conv_id}/export")
async def export_conversation(conv_id: str, format: Literal["txt", "html", "json"] = "txt"):
    conv = _require_conversation(conv_id)
    prefs = load_preferences()
    if format == "txt":
        body = conversation_to_text(conv, prefs)
    elif format == "html":
        body = conversation_to_html(conv, prefs)
    else:
        body = conversation_to_json(conv)
    filename = export_filename(conv.title, format)
    return Response(
        content=body,
        media_type=_MEDIA_TYPES[format],
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{conv_id}/upload")
async def upload_conversation(conv_id: str):
    conv = _require_conversation(conv_id)
    try:
        file = await DriveClient().upload_json(
            export_filename(conv.title, "json"), conversation_to_json(conv)
        )
    except (DriveError, GoogleAuthError) as e:
        raise _integration_failure(e)
    get_sink().notify(f'"{conv.title}" uploaded to Google Drive.', "success")
    return {"file": file}


@router.post("/{conv_id}/upload-doc")
async def upload_conversation_doc(conv_id: str):
    conv = _require_conversation(conv_id)
    try:
        link = await DriveClient().create_doc(
            conv.title, conversation_to_doc_html(conv, load_preferences())
        )
    except (DriveError, GoogleAuthError) as e:
        raise _integration_failure(e)
    get_sink().notify(f'Google Doc created for "{conv.title}".', "success")
    return {"web_view_link": link}


@router.post("/upload-all")
async def upload_all_conversations():
    conversations = get_reconciler().store.list_conversations()
    if not conversations:
        raise HTTPException(status_code=400, detail="No conversations to upload")
    try:
        file = await DriveClient().upload_json(
            "ConverseAI - All Conversations.json", conversations_to_json(conversations)
        )
    except (DriveError, GoogleAuthError) as e:
        raise _integration_failure(e)
    get_sink().notify(f"{len(conversations)} conversations uploaded to Google Drive.", "success")
    return {"file": file, "count": len(conversations)}
