"""Post-processing job and extractor interface. Extractors turn a completed turn into facts."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass(frozen=True)
class PostProcessingJob:
    assistant_text: str
    user_text: str
    conversation_id: str
    has_attachments: bool = False


@dataclass
class Fact:
    kind: str  # "memory" | "nutrition"
    summary: str
    category: str = "context"
    importance: float = 0.5
    data: dict[str, Any] | None = None


@dataclass
class FactSet:
    facts: list[Fact] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.facts)

    def __iter__(self):
        return iter(self.facts)


class FactExtractor(ABC):
    name: ClassVar[str]

    @abstractmethod
    async def extract(self, job: PostProcessingJob) -> FactSet:
        """Extract facts from one completed turn. May raise; the processor isolates failures."""
        ...
