"""Google Gemini LLM provider."""

from typing import AsyncIterator

from google import genai
from google.genai import errors, types

from chatstream.core.config import settings
from chatstream.core.exceptions import ProviderError
from chatstream.services.llm.base import (
    BaseLLMProvider,
    Chunk,
    Completion,
    GenerationEvent,
    Message,
    ModelInfo,
)


class GeminiProvider(BaseLLMProvider):
    name = "google"
    default_model = "gemini-2.0-flash"
    models = (
        ModelInfo("gemini-2.0-flash", "Gemini 2.0 Flash", "Fast responses for everyday questions"),
        ModelInfo("gemini-1.5-pro", "Gemini 1.5 Pro", "Images, documents and longer analysis"),
    )

    def __init__(self, api_key: str | None = None):
        self.client = genai.Client(api_key=api_key or settings.gemini_api_key)

    async def generate(
        self, messages: list[Message], model: str | None = None
    ) -> AsyncIterator[GenerationEvent]:
        system = "\n\n".join(m.content for m in messages if m.role == "system")
        contents = [
            types.Content(
                role="model" if m.role == "assistant" else "user",
                parts=[types.Part(text=m.content)],
            )
            for m in messages
            if m.role != "system"
        ]
        config = types.GenerateContentConfig(system_instruction=system) if system else None

        try:
            response = await self.client.aio.models.generate_content_stream(
                model=model or self.default_model,
                contents=contents,
                config=config,
            )
            async for chunk in response:
                if chunk.text:
                    yield Chunk(chunk.text)
        except errors.APIError as e:
            raise ProviderError(self.name, f"Gemini request failed: {e}") from e

        # Gemini only streams deltas, the concatenation is the final text
        yield Completion()
