"""Abstract LLM provider interface. All providers must implement this."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, ClassVar, Union


@dataclass
class Message:
    role: str  # "user" | "assistant" | "system"
    content: str


@dataclass
class Chunk:
    """An incremental piece of generated text."""
    text: str


@dataclass
class Completion:
    """End of a generation. `text` is the provider's own final string, when it supplies one."""
    text: str | None = None


GenerationEvent = Union[Chunk, Completion]


@dataclass
class ModelInfo:
    id: str
    name: str
    description: str = ""


class BaseLLMProvider(ABC):
    name: ClassVar[str]
    default_model: ClassVar[str]
    models: ClassVar[tuple[ModelInfo, ...]] = ()

    @abstractmethod
    def generate(
        self, messages: list[Message], model: str | None = None
    ) -> AsyncIterator[GenerationEvent]:
        """Stream a response as Chunk events followed by exactly one Completion.

        Failures raise ProviderError. Closing the iterator cancels the upstream call.
        """
        ...

    async def complete(self, messages: list[Message], model: str | None = None) -> str:
        """Run a generation to the end and return the canonical text."""
        parts: list[str] = []
        final: str | None = None
        stream = self.generate(messages, model)
        try:
            async for event in stream:
                if isinstance(event, Chunk):
                    parts.append(event.text)
                else:
                    final = event.text
        finally:
            await stream.aclose()  # type: ignore[attr-defined]
        return final if final is not None else "".join(parts)
