import asyncio
import base64
import logging
from typing import AsyncIterator, Optional

import httpx
from google import genai
from google.genai import types

from ..conversation.models import ImageAttachment, Message
from ..preferences import UserPreferences, build_system_instruction
from .base import GenerationError, GenerationGateway, ProgressCallback

logger = logging.getLogger(__name__)

CODE_REVIEW_INSTRUCTION = (
    "You are an expert software engineer performing a code review. "
    "Point out bugs, security issues and readability problems, explain why each "
    "matters, and show corrected code in fenced code blocks."
)

SCRIPT_INSTRUCTION = (
    "You are a professional scriptwriter. Write in standard screenplay format "
    "with scene headings, action lines, character names and dialogue."
)

MIND_MAP_PROMPT = """\
Create a hierarchical mind map for the topic below. Respond ONLY with a JSON \
object of the form {{"topic": "...", "children": [{{"topic": "...", "children": [...]}}]}}. \
Use at most 3 levels of depth and 3-6 children per node.

Topic: {prompt}"""

TITLE_PROMPT = (
    'Generate a short, concise title (4 words max) for the following '
    'conversation starter: "{seed}"'
)

_MAX_TITLE_CHARS = 30


def normalize_title(raw: str) -> str:
    """Strip quotes and cap the title at 30 characters."""
    title = raw.strip().replace('"', "")
    if len(title) > _MAX_TITLE_CHARS:
        title = title[: _MAX_TITLE_CHARS - 3] + "..."
    return title


class GeminiGateway(GenerationGateway):
    name = "gemini"

    def __init__(
        self,
        api_key: str,
        chat_model: str = "gemini-2.5-flash",
        title_model: str = "gemini-2.5-flash",
        image_model: str = "imagen-4.0-generate-001",
        video_model: str = "veo-2.0-generate-001",
        video_poll_seconds: float = 10.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.api_key = api_key
        self.client = genai.Client(api_key=api_key)
        self.chat_model = chat_model
        self.title_model = title_model
        self.image_model = image_model
        self.video_model = video_model
        self.video_poll_seconds = video_poll_seconds
        self._http_client = http_client

    def _build_contents(self, history: list[Message]) -> list[types.Content]:
        return [
            types.Content(
                role=m.role,
                parts=[types.Part.from_text(text=m.content)],
            )
            for m in history
        ]

    async def _stream(
        self,
        contents: list[types.Content],
        system_instruction: Optional[str],
        response_mime_type: Optional[str] = None,
    ) -> AsyncIterator[str]:
        config = types.GenerateContentConfig(
            system_instruction=system_instruction,
            response_mime_type=response_mime_type,
        )
        stream = await self.client.aio.models.generate_content_stream(
            model=self.chat_model,
            contents=contents,
            config=config,
        )
        async for chunk in stream:
            if chunk.text:
                yield chunk.text

    def chat(
        self, history: list[Message], new_input: str, prefs: UserPreferences
    ) -> AsyncIterator[str]:
        contents = self._build_contents(history)
        contents.append(
            types.Content(role="user", parts=[types.Part.from_text(text=new_input)])
        )
        return self._stream(contents, build_system_instruction(prefs))

    def chat_with_image(
        self,
        history: list[Message],
        new_input: str,
        image: ImageAttachment,
        prefs: UserPreferences,
    ) -> AsyncIterator[str]:
        contents = self._build_contents(history)
        parts = [types.Part.from_bytes(data=image.raw_bytes(), mime_type=image.mime_type)]
        if new_input:
            parts.append(types.Part.from_text(text=new_input))
        contents.append(types.Content(role="user", parts=parts))
        return self._stream(contents, build_system_instruction(prefs))

    def code_review(
        self, history: list[Message], query: str, prefs: UserPreferences
    ) -> AsyncIterator[str]:
        contents = self._build_contents(history)
        contents.append(
            types.Content(role="user", parts=[types.Part.from_text(text=query)])
        )
        return self._stream(
            contents, build_system_instruction(prefs, CODE_REVIEW_INSTRUCTION)
        )

    def script(
        self, history: list[Message], prompt: str, prefs: UserPreferences
    ) -> AsyncIterator[str]:
        contents = self._build_contents(history)
        contents.append(
            types.Content(role="user", parts=[types.Part.from_text(text=prompt)])
        )
        return self._stream(contents, build_system_instruction(prefs, SCRIPT_INSTRUCTION))

    def mind_map(self, prompt: str, prefs: UserPreferences) -> AsyncIterator[str]:
        contents = [
            types.Content(
                role="user",
                parts=[types.Part.from_text(text=MIND_MAP_PROMPT.format(prompt=prompt))],
            )
        ]
        return self._stream(
            contents,
            build_system_instruction(prefs),
            response_mime_type="application/json",
        )

    async def image(self, prompt: str) -> str:
        try:
            response = await self.client.aio.models.generate_images(
                model=self.image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(
                    number_of_images=1,
                    output_mime_type="image/png",
                    aspect_ratio="1:1",
                ),
            )
        except Exception as e:
            logger.error("Image generation failed: %s", e)
            raise GenerationError(f"Image generation failed: {e}") from e

        if not response.generated_images or not response.generated_images[0].image:
            raise GenerationError(
                "No image was generated. The response may have been blocked."
            )
        image_bytes = response.generated_images[0].image.image_bytes
        return "data:image/png;base64," + base64.b64encode(image_bytes).decode("ascii")

    async def video(
        self, prompt: str, on_progress: Optional[ProgressCallback] = None
    ) -> str:
        try:
            operation = await self.client.aio.models.generate_videos(
                model=self.video_model,
                prompt=prompt,
                config=types.GenerateVideosConfig(number_of_videos=1),
            )
            polls = 0
            while not operation.done:
                polls += 1
                if on_progress:
                    on_progress(f"Still generating video ({polls * self.video_poll_seconds:.0f}s)...")
                await asyncio.sleep(self.video_poll_seconds)
                operation = await self.client.aio.operations.get(operation)
        except Exception as e:
            logger.error("Video generation failed: %s", e)
            raise GenerationError(f"Video generation failed: {e}") from e

        if operation.error:
            raise GenerationError(f"Video generation failed: {operation.error}")
        videos = operation.response.generated_videos if operation.response else None
        if not videos or not videos[0].video or not videos[0].video.uri:
            raise GenerationError(
                "No video was generated. The response may have been blocked."
            )
        return videos[0].video.uri

    async def download_video(self, uri: str) -> bytes:
        # The key goes in a header, never into the stored URL
        headers = {"x-goog-api-key": self.api_key}
        try:
            if self._http_client is not None:
                resp = await self._http_client.get(uri, headers=headers, follow_redirects=True)
            else:
                async with httpx.AsyncClient(timeout=120, follow_redirects=True) as client:
                    resp = await client.get(uri, headers=headers)
        except httpx.HTTPError as e:
            raise GenerationError(f"Video download failed: {e}") from e
        if resp.status_code >= 400:
            logger.error("Video download HTTP %s: %s", resp.status_code, resp.text[:500])
            raise GenerationError(f"Video download failed with HTTP {resp.status_code}")
        return resp.content

    async def title(self, seed_text: str) -> str:
        response = await self.client.aio.models.generate_content(
            model=self.title_model,
            contents=TITLE_PROMPT.format(seed=seed_text),
        )
        return normalize_title(response.text or "")
