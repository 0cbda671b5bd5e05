"""
Batch Enrichment Scheduler
==========================
Drains unchecked records through the external scorer in fixed-size
batches, oldest first.

- Batches never overlap: each one is fetched after the previous one was
  marked checked, ordered by ascending id.
- A scorer failure (after the gateway's retries) stops the run; batches
  already committed stay committed.
- A batch shorter than ``batch_size`` is the last one.
- Cancellation is honored before each batch.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import Awaitable, Callable, Optional

from .clients import MatchScorer
from .errors import ConfigurationError
from .models import BatchProgress
from .retry import RetryGateway
from .store import RecordStore

logger = logging.getLogger(__name__)

NOTHING_TO_SCORE = "nothing-to-score"
EXHAUSTED = "exhausted"
SCORER_FAILED = "scorer-failed"
CANCELLED = "cancelled"


class BatchEnrichmentScheduler:
    """Sequential batch scoring of unchecked records."""

    def __init__(
        self,
        store: RecordStore,
        scorer: MatchScorer,
        profile: str,
        gateway: Optional[RetryGateway] = None,
        cooldown: float = 3.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.store = store
        self.scorer = scorer
        self.profile = profile
        self.gateway = gateway or RetryGateway()
        self.cooldown = cooldown
        self._sleep = sleep or asyncio.sleep
        self.stop_event = stop_event or threading.Event()

    async def run(self, batch_size: int = 10) -> BatchProgress:
        """
        Score every unchecked record.

        Returns:
            BatchProgress for this invocation; ``stop_reason`` is one of
            "nothing-to-score", "exhausted", "scorer-failed", "cancelled"
        """
        if batch_size < 1:
            raise ConfigurationError(f"batch_size must be >= 1, got {batch_size}")

        progress = BatchProgress(total_unmatched=self.store.count_unmatched())
        if progress.total_unmatched == 0:
            progress.stop_reason = NOTHING_TO_SCORE
            logger.info("[BATCH] No unmatched records")
            return progress

        logger.info(
            f"[BATCH] {progress.total_unmatched} unmatched record(s), batch size {batch_size}"
        )

        while True:
            if self.stop_event.is_set():
                progress.stop_reason = CANCELLED
                logger.info("[BATCH] Cancelled")
                break

            batch = self.store.get_unmatched(batch_size)
            if not batch:
                progress.stop_reason = EXHAUSTED
                break

            progress.batch_number += 1
            logger.info(
                f"[BATCH] Batch {progress.batch_number}: {len(batch)} record(s) "
                f"(ids {batch[0].id}..{batch[-1].id})"
            )

            try:
                results = await self.gateway.call(
                    lambda: self.scorer.score(self.profile, batch),
                    operation=f"score batch {progress.batch_number}",
                )
            except Exception as e:
                progress.stop_reason = SCORER_FAILED
                logger.error(f"[BATCH] Scoring failed, stopping: {e}")
                break

            self.store.apply_matches(results)
            self.store.mark_checked([record.id for record in batch])
            progress.total_processed += len(batch)

            recommended = sum(1 for r in results if r.recommend)
            logger.info(
                f"[BATCH] Batch {progress.batch_number} done: {len(results)} scored, "
                f"{recommended} recommended "
                f"({progress.total_processed}/{progress.total_unmatched})"
            )

            if len(batch) < batch_size:
                progress.stop_reason = EXHAUSTED
                break

            await self._sleep(self.cooldown)

        logger.info(
            f"[BATCH] Finished: {progress.total_processed} processed in "
            f"{progress.batch_number} batch(es), reason={progress.stop_reason}"
        )
        return progress
