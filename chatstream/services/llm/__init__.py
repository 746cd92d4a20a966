"""LLM provider adapters and the registry that selects between them."""

from chatstream.services.llm.base import BaseLLMProvider, Chunk, Completion, Message
from chatstream.services.llm.registry import ProviderRegistry, create_default_registry
from chatstream.services.llm.selection import select_model

__all__ = [
    "BaseLLMProvider",
    "Chunk",
    "Completion",
    "Message",
    "ProviderRegistry",
    "create_default_registry",
    "select_model",
]
