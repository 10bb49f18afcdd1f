"""Background conversation titling.

Titles are generated by a fire-and-forget task per conversation. The task is
cancelled when its conversation is deleted, and a title that still resolves
afterwards is dropped because the store has tombstoned the id.
"""

import asyncio
import logging
from typing import Optional

from ..llm.base import GenerationGateway
from .storage import ConversationStore

logger = logging.getLogger(__name__)


class TitleTasks:
    def __init__(self, store: ConversationStore, gateway: Optional[GenerationGateway]):
        self.store = store
        self.gateway = gateway
        self._tasks: dict[str, asyncio.Task] = {}

    def spawn(self, conversation_id: str, seed_text: str) -> asyncio.Task:
        self.cancel(conversation_id)
        task = asyncio.get_running_loop().create_task(
            self._generate(conversation_id, seed_text)
        )
        self._tasks[conversation_id] = task
        task.add_done_callback(lambda t: self._forget(conversation_id, t))
        return task

    def _forget(self, conversation_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(conversation_id) is task:
            del self._tasks[conversation_id]

    async def _generate(self, conversation_id: str, seed_text: str) -> None:
        gateway = self.gateway
        if gateway is None:
            return
        try:
            title = await gateway.title(seed_text)
        except Exception as e:
            logger.debug("Title generation failed for %s: %s", conversation_id, e)
            return
        if not title:
            return
        if self.store.is_tombstoned(conversation_id):
            logger.debug("Dropping title for deleted conversation %s", conversation_id)
            return
        self.store.rename_conversation(conversation_id, title)

    def cancel(self, conversation_id: str) -> None:
        task = self._tasks.pop(conversation_id, None)
        if task is not None and not task.done():
            task.cancel()

    def pending(self) -> list[asyncio.Task]:
        return list(self._tasks.values())

    async def wait_all(self) -> None:
        tasks = self.pending()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
