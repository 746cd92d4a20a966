"""Background post-processor: an in-process queue drained by worker tasks.

The streaming path only ever calls `dispatch`, which enqueues and returns. Extraction
and fact persistence happen on the workers, and any failure there is counted and
logged without reaching the turn that produced the job.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass

from chatstream.models.fact import ExtractedFact
from chatstream.services.background.base import FactExtractor, PostProcessingJob
from chatstream.services.background.deduplication import FactDeduplicator, normalize_summary
from chatstream.services.persistence import PersistenceGateway

logger = logging.getLogger(__name__)


@dataclass
class ProcessorStats:
    queued: int = 0
    processed: int = 0
    failed: int = 0
    dropped: int = 0
    facts_saved: int = 0


class BackgroundProcessor:
    def __init__(
        self,
        gateway: PersistenceGateway,
        extractors: list[FactExtractor],
        deduplicator: FactDeduplicator,
        workers: int = 1,
        queue_size: int = 100,
    ):
        self.gateway = gateway
        self.extractors = extractors
        self.deduplicator = deduplicator
        self.workers = workers
        self.stats = ProcessorStats()
        self._queue: asyncio.Queue[PostProcessingJob] = asyncio.Queue(maxsize=queue_size)
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def start(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            asyncio.create_task(self._worker(n), name=f"post-processor-{n}")
            for n in range(self.workers)
        ]
        logger.info(f"Background processor started with {self.workers} worker(s)")

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        logger.info(f"Background processor stopped ({self._queue.qsize()} job(s) left unprocessed)")

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    def dispatch(
        self,
        assistant_text: str,
        user_text: str,
        conversation_id: str,
        has_attachments: bool = False,
    ) -> None:
        job = PostProcessingJob(assistant_text, user_text, conversation_id, has_attachments)
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning(f"Post-processing queue full, dropped job for {conversation_id}")
            return
        self.stats.queued += 1
        logger.debug(f"Queued post-processing for {conversation_id}")

    def snapshot(self) -> dict[str, int]:
        return {**asdict(self.stats), "pending": self._queue.qsize()}

    async def _worker(self, n: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.process(job)
            except Exception:
                self.stats.failed += 1
                logger.exception(f"Post-processing worker {n} failed on {job.conversation_id}")
            finally:
                self._queue.task_done()

    async def process(self, job: PostProcessingJob) -> int:
        """Run every extractor over one job and store new facts. Returns the number saved."""
        saved = 0
        for extractor in self.extractors:
            try:
                facts = await extractor.extract(job)
            except Exception:
                self.stats.failed += 1
                logger.exception(f"{extractor.name} extraction failed for {job.conversation_id}")
                continue

            for fact in facts:
                if self.deduplicator.is_duplicate(job.conversation_id, fact):
                    logger.debug(f"Skipping duplicate {fact.kind} fact: {fact.summary[:80]}")
                    continue
                self.gateway.insert_fact(
                    ExtractedFact(
                        conversation_id=job.conversation_id,
                        kind=fact.kind,
                        category=fact.category,
                        summary=fact.summary,
                        normalized=normalize_summary(fact.summary),
                        importance=fact.importance,
                        data=fact.data,
                    )
                )
                self.deduplicator.remember(job.conversation_id, fact)
                saved += 1

        self.stats.processed += 1
        self.stats.facts_saved += saved
        return saved
