"""OpenAI chat completions provider."""

from typing import AsyncIterator

from openai import AsyncOpenAI, OpenAIError

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


class OpenAIProvider(BaseLLMProvider):
    name = "openai"
    default_model = "gpt-4o-mini"
    models = (
        ModelInfo("gpt-4o", "GPT-4o", "Multimodal, best for images and complex questions"),
        ModelInfo("gpt-4o-mini", "GPT-4o mini", "Fast and inexpensive"),
        ModelInfo("gpt-4-turbo", "GPT-4 Turbo", "Large context window"),
    )

    def __init__(self, api_key: str | None = None):
        self.client = AsyncOpenAI(api_key=api_key or settings.openai_api_key)

    async def generate(
        self, messages: list[Message], model: str | None = None
    ) -> AsyncIterator[GenerationEvent]:
        try:
            stream = await self.client.chat.completions.create(
                model=model or self.default_model,
                messages=[{"role": m.role, "content": m.content} for m in messages],  # type: ignore[misc]
                stream=True,
            )
            async for chunk in stream:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta.content
                if delta:
                    yield Chunk(delta)
        except OpenAIError as e:
            raise ProviderError(self.name, f"OpenAI request failed: {e}") from e

        yield Completion()
