"""Background post-processing of completed turns."""

from chatstream.core.config import settings
from chatstream.services.background.base import (
    Fact,
    FactExtractor,
    FactSet,
    PostProcessingJob,
)
from chatstream.services.background.deduplication import FactDeduplicator
from chatstream.services.background.processor import BackgroundProcessor
from chatstream.services.llm.registry import ProviderRegistry


def create_default_extractors(registry: ProviderRegistry) -> list[FactExtractor]:
    """Extractors enabled by configuration."""
    from chatstream.services.background.memory import MemoryExtractor
    from chatstream.services.background.nutrition import NutritionExtractor

    extractors: list[FactExtractor] = []
    if settings.memory_detection_enabled and registry.names():
        extractors.append(MemoryExtractor(registry, provider=settings.default_provider))
    if settings.nutrition_inference_enabled:
        extractors.append(NutritionExtractor())
    return extractors


__all__ = [
    "BackgroundProcessor",
    "Fact",
    "FactDeduplicator",
    "FactExtractor",
    "FactSet",
    "PostProcessingJob",
    "create_default_extractors",
]
