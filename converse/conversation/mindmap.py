import json
import logging
from typing import Optional

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)


class MindMapNode(BaseModel):
    topic: str
    children: list["MindMapNode"] = []


def parse_mind_map(content: str, complete: bool) -> Optional[MindMapNode]:
    """Parse mind-map JSON produced by a streamed response.

    While the stream is still running the text is usually an unfinished JSON
    document, so nothing is parsed until *complete* is true. A finished but
    malformed document yields ``None``.
    """
    if not complete or not content.strip():
        return None
    text = content.strip()
    if text.startswith("```"):
        lines = text.split("\n")
        text = "\n".join(lines[1:-1]) if len(lines) > 2 else text
    try:
        return MindMapNode.model_validate(json.loads(text))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.debug("Mind map content is not a valid topic tree: %s", e)
        return None


def render_outline(node: MindMapNode, depth: int = 0) -> str:
    """Render a topic tree as an indented bullet outline."""
    lines = [f"{'  ' * depth}- {node.topic}"]
    for child in node.children:
        lines.append(render_outline(child, depth + 1))
    return "\n".join(lines)
