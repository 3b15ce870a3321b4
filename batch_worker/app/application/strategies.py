"""Built-in processing strategies."""
from __future__ import annotations

from loguru import logger

from batch_worker.app.domain.models import Batch, ProcessOutcome, outcome_from_failures


class KeywordFailureStrategy:
    """Logs every message and fails those whose payload contains a keyword.

    Useful for exercising the ack/nack paths against a live queue: publish a
    few messages containing the keyword and watch them come back.
    """

    def __init__(self, keyword: str = "error") -> None:
        if not keyword:
            raise ValueError("keyword must be non-empty")
        self._keyword = keyword.lower()

    @property
    def keyword(self) -> str:
        return self._keyword

    async def __call__(self, batch: Batch) -> ProcessOutcome:
        failed: list[int] = []
        for index, handle in enumerate(batch, start=1):
            content = handle.payload.decode("utf-8", errors="replace")
            logger.info("{}. [{}] {}", index, handle.routing_key, content)
            if self._keyword in content.lower():
                logger.warning("processing failed for delivery {}", handle.delivery_id)
                failed.append(handle.delivery_id)
        return outcome_from_failures(batch, failed)
