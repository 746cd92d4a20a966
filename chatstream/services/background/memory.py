"""Memory detection - asks an LLM whether the user said something worth remembering."""

import logging
import re
from typing import Literal

from pydantic import BaseModel, Field, ValidationError

from chatstream.services.background.base import Fact, FactExtractor, FactSet, PostProcessingJob
from chatstream.services.llm.base import Message
from chatstream.services.llm.registry import ProviderRegistry

logger = logging.getLogger(__name__)

MEMORY_PROMPT = """Analyze this wellness message for important info about the user: "{message}"

Return JSON only:
{{"should_remember": true/false, "category": "personal_info|preference|context|goal", "importance": 0.1-1.0, "summary": "brief summary", "keywords": ["key", "words"]}}"""

_FENCE = re.compile(r"```(?:json)?")


class MemoryDetection(BaseModel):
    should_remember: bool = False
    category: Literal["personal_info", "preference", "context", "goal"] = "context"
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    summary: str = ""
    keywords: list[str] = Field(default_factory=list)


def parse_detection(text: str) -> MemoryDetection | None:
    """Pull the JSON object out of a model reply, tolerating code fences and chatter around it."""
    cleaned = _FENCE.sub("", text).strip()
    start, end = cleaned.find("{"), cleaned.rfind("}")
    if start == -1 or end <= start:
        logger.debug(f"No JSON object in memory detection reply: {text[:200]!r}")
        return None
    try:
        return MemoryDetection.model_validate_json(cleaned[start:end + 1])
    except ValidationError as e:
        logger.warning(f"Invalid memory detection reply: {e}")
        return None


class MemoryExtractor(FactExtractor):
    name = "memory"

    def __init__(self, registry: ProviderRegistry, provider: str = "google", model: str | None = None):
        self.registry = registry
        self.provider = provider
        self.model = model

    async def extract(self, job: PostProcessingJob) -> FactSet:
        if not job.user_text.strip():
            return FactSet()

        provider, model = self.registry.resolve(self.provider, self.model)
        reply = await provider.complete(
            [Message(role="user", content=MEMORY_PROMPT.format(message=job.user_text))], model
        )
        detection = parse_detection(reply)
        if detection is None or not detection.should_remember or not detection.summary.strip():
            return FactSet()

        logger.info(f"Memory detected in {job.conversation_id}: {detection.summary[:100]}")
        return FactSet([
            Fact(
                kind="memory",
                summary=detection.summary.strip(),
                category=detection.category,
                importance=detection.importance,
                data={"keywords": detection.keywords},
            )
        ])
