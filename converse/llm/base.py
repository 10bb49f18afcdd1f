from abc import ABC, abstractmethod
from typing import AsyncIterator, Callable, Optional

from ..conversation.models import ImageAttachment, Message
from ..preferences import UserPreferences

ProgressCallback = Callable[[str], None]


class GenerationError(Exception):
    """Raised when the provider rejects or fails a generation request."""
    pass


class GenerationGateway(ABC):
    """Abstract boundary to the generative-AI provider.

    Streaming operations return an async iterator of text fragments; the rest
    resolve to a single value. Any operation may raise at any point, including
    halfway through a stream.
    """

    name: str

    @abstractmethod
    def chat(
        self, history: list[Message], new_input: str, prefs: UserPreferences
    ) -> AsyncIterator[str]:
        ...

    @abstractmethod
    def chat_with_image(
        self,
        history: list[Message],
        new_input: str,
        image: ImageAttachment,
        prefs: UserPreferences,
    ) -> AsyncIterator[str]:
        ...

    @abstractmethod
    def code_review(
        self, history: list[Message], query: str, prefs: UserPreferences
    ) -> AsyncIterator[str]:
        ...

    @abstractmethod
    def script(
        self, history: list[Message], prompt: str, prefs: UserPreferences
    ) -> AsyncIterator[str]:
        ...

    @abstractmethod
    def mind_map(self, prompt: str, prefs: UserPreferences) -> AsyncIterator[str]:
        """Stream one JSON document ``{"topic": ..., "children": [...]}``."""
        ...

    @abstractmethod
    async def image(self, prompt: str) -> str:
        """Generate an image and return it as a URL or data: URI."""
        ...

    @abstractmethod
    async def video(
        self, prompt: str, on_progress: Optional[ProgressCallback] = None
    ) -> str:
        ...

    @abstractmethod
    async def download_video(self, uri: str) -> bytes:
        """Fetch the bytes behind a URI returned by ``video``."""
        ...

    @abstractmethod
    async def title(self, seed_text: str) -> str:
        ...
