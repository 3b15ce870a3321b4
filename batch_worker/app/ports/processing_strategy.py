"""Port: caller-supplied batch processing logic."""
from __future__ import annotations

from typing import Protocol

from batch_worker.app.domain.models import Batch, ProcessOutcome


class ProcessingStrategy(Protocol):
    """Processes one batch and reports which messages failed.

    Called once per flush, never concurrently for the same consumer. Raising
    instead of returning an outcome makes the whole batch go back to the queue.
    """

    async def __call__(self, batch: Batch) -> ProcessOutcome: ...
