"""Serialize conversations for download, printing and Drive upload."""

import html
import json
import re
from datetime import datetime, tzinfo
from typing import Optional

from .conversation.mindmap import parse_mind_map, render_outline
from .conversation.models import Conversation, Message
from .preferences import UserPreferences

HEAVY_RULE = "=" * 40
LIGHT_RULE = "-" * 40


def format_timestamp(timestamp_ms: int, tz: Optional[tzinfo] = None) -> str:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=tz).strftime("%Y-%m-%d %H:%M:%S")


def author_name(message: Message, prefs: UserPreferences) -> str:
    if message.role == "user":
        return prefs.user_name or "User"
    return "AI"


def export_filename(title: str, extension: str) -> str:
    return f"ConverseAI - {re.sub(r'[^a-zA-Z0-9]', '_', title)}.{extension}"


def _display_content(message: Message) -> str:
    if message.is_mind_map and not message.is_error:
        tree = parse_mind_map(message.content, complete=True)
        if tree is not None:
            return render_outline(tree)
    return message.content


def conversation_to_text(
    conv: Conversation,
    prefs: UserPreferences,
    exported_at: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> str:
    exported_at = exported_at or datetime.now(tz)
    out = [
        f"Title: {conv.title}\n",
        f"Exported on: {exported_at.strftime('%Y-%m-%d %H:%M:%S')}\n\n",
        f"{HEAVY_RULE}\n\n",
    ]
    for msg in conv.messages:
        out.append(f"[{format_timestamp(msg.timestamp, tz)}] {author_name(msg, prefs)}:\n")
        if msg.image_url:
            out.append("[Image Attached]\n")
        if msg.video_url:
            out.append("[Video Attached]\n")
        out.append(f"{_display_content(msg)}\n\n")
        out.append(f"{LIGHT_RULE}\n\n")
    return "".join(out)


_PRINT_STYLE = """\
body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, Helvetica, Arial, sans-serif; margin: 2rem; color: #111; }
h1 { color: #000; }
.message { border: 1px solid #dee2e6; border-radius: 8px; margin-bottom: 1rem; padding: 1rem; }
.message.user { background-color: #f1f3f5; }
.message.model { background-color: #fff; border-color: #e9ecef; }
.message.error { border-color: #f5c2c7; }
.author { font-weight: bold; margin-bottom: 0.5rem; color: #495057; }
.timestamp { font-size: 0.8rem; color: #868e96; text-align: right; margin-top: 0.5rem; }
.content { white-space: pre-wrap; word-wrap: break-word; }
.attachment { max-width: 100%; max-height: 400px; margin-top: 0.5rem; border-radius: 4px; }
@media print {
  body { margin: 1cm; }
  .message { page-break-inside: avoid; }
}"""


def _message_html(msg: Message, prefs: UserPreferences, tz: Optional[tzinfo]) -> str:
    classes = f"message {msg.role}" + (" error" if msg.is_error else "")
    body = html.escape(_display_content(msg)).replace("\n", "<br>")
    if msg.image_url:
        body += f'<br><img src="{html.escape(msg.image_url, quote=True)}" class="attachment">'
    if msg.video_url:
        body += (
            f'<br><video src="{html.escape(msg.video_url, quote=True)}" '
            'class="attachment" controls></video>'
        )
    return (
        f'<div class="{classes}">\n'
        f'  <div class="author">{html.escape(author_name(msg, prefs))}</div>\n'
        f'  <div class="content">{body}</div>\n'
        f'  <div class="timestamp">{format_timestamp(msg.timestamp, tz)}</div>\n'
        "</div>"
    )


def conversation_to_html(
    conv: Conversation,
    prefs: UserPreferences,
    exported_at: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
) -> str:
    """A standalone, print-ready HTML transcript."""
    exported_at = exported_at or datetime.now(tz)
    title = html.escape(conv.title)
    messages_html = "\n".join(_message_html(m, prefs, tz) for m in conv.messages)
    return (
        "<!DOCTYPE html>\n"
        "<html>\n<head>\n"
        '<meta charset="utf-8">\n'
        f"<title>Export: {title}</title>\n"
        f"<style>\n{_PRINT_STYLE}\n</style>\n"
        "</head>\n<body>\n"
        f"<h1>{title}</h1>\n"
        f"<p>Exported on: {exported_at.strftime('%Y-%m-%d %H:%M:%S')}</p>\n"
        "<hr>\n"
        f"{messages_html}\n"
        "</body>\n</html>\n"
    )


def conversation_to_doc_html(conv: Conversation, prefs: UserPreferences) -> str:
    """Minimal HTML fragment; Drive converts it into a Google Doc."""
    parts = [f"<h1>{html.escape(conv.title)}</h1>"]
    for msg in conv.messages:
        content = html.escape(_display_content(msg)).replace("\n", "<br>")
        parts.append(f"<p><b>{html.escape(author_name(msg, prefs))}:</b><br>{content}</p>")
    return "\n".join(parts)


def conversation_to_json(conv: Conversation) -> str:
    return json.dumps(conv.model_dump(mode="json"), indent=2, ensure_ascii=False)


def conversations_to_json(conversations: list[Conversation]) -> str:
    return json.dumps(
        [c.model_dump(mode="json") for c in conversations], indent=2, ensure_ascii=False
    )
