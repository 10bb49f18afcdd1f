from fastapi import APIRouter

from ..prompt_templates import PROMPT_TEMPLATES

router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.get("")
async def list_templates():
    return {"templates": [t.model_dump() for t in PROMPT_TEMPLATES]}
