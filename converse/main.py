import asyncio
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from converse.api.routes_chat import router as chat_router
from converse.api.routes_conversation import router as conversation_router
from converse.api.routes_export import router as export_router
from converse.api.routes_google_auth import router as google_auth_router
from converse.api.routes_notifications import router as notifications_router
from converse.api.routes_settings import router as settings_router
from converse.api.routes_templates import router as templates_router
from converse.conversation.reconciler import get_reconciler

__version__ = "0.1.0"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app):
    reconciler = get_reconciler()
    if reconciler.gateway is None:
        logger.warning("No Gemini API key configured; generation is disabled until one is set")
    yield
    # Cancelled generations still mark their placeholder as failed
    tasks = [h.task for h in reconciler.outstanding() if h.task is not None]
    for task in tasks:
        task.cancel()
    if tasks:
        await asyncio.gather(*tasks, return_exceptions=True)
    for task in reconciler.titles.pending():
        task.cancel()


app = FastAPI(title="Converse Backend", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:5173",     # Vite dev server
        "http://127.0.0.1:5173",
        "null",                      # Electron file:// origin
    ],
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

app.include_router(chat_router)
app.include_router(conversation_router)
app.include_router(export_router)
app.include_router(settings_router)
app.include_router(google_auth_router)
app.include_router(notifications_router)
app.include_router(templates_router)


@app.get("/api/health")
async def health_check():
    return {"status": "ok", "version": __version__}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="127.0.0.1", port=8765)
