"""Fact de-duplication, constructed once at startup and handed to the processor."""

import re
from collections import OrderedDict

from chatstream.services.background.base import Fact
from chatstream.services.persistence import PersistenceGateway

_NON_WORD = re.compile(r"[^\w\s]")
_SPACES = re.compile(r"\s+")

FactKey = tuple[str, str, str]


def normalize_summary(summary: str) -> str:
    return _SPACES.sub(" ", _NON_WORD.sub("", summary.lower())).strip()


class FactDeduplicator:
    """Skips facts already stored for a conversation, by normalized summary.

    The database is authoritative; recently seen keys are cached in a bounded LRU
    to spare a query per fact.
    """

    def __init__(self, gateway: PersistenceGateway, cache_size: int = 1024):
        self.gateway = gateway
        self.cache_size = cache_size
        self._seen: OrderedDict[FactKey, None] = OrderedDict()

    def _key(self, conversation_id: str, fact: Fact) -> FactKey:
        return conversation_id, fact.kind, normalize_summary(fact.summary)

    def _cache(self, key: FactKey) -> None:
        self._seen[key] = None
        self._seen.move_to_end(key)
        while len(self._seen) > self.cache_size:
            self._seen.popitem(last=False)

    def is_duplicate(self, conversation_id: str, fact: Fact) -> bool:
        key = self._key(conversation_id, fact)
        if key in self._seen:
            self._seen.move_to_end(key)
            return True
        if self.gateway.fact_exists(*key):
            self._cache(key)
            return True
        return False

    def remember(self, conversation_id: str, fact: Fact) -> None:
        self._cache(self._key(conversation_id, fact))

    def __len__(self) -> int:
        return len(self._seen)
