"""In-memory accumulator for messages awaiting a flush."""
from __future__ import annotations

from collections import deque

from batch_worker.app.domain.models import MessageHandle


class BatchBuffer:
    """Arrival-ordered buffer owned by a single consumer loop.

    The buffer does not enforce its capacity; the consumer drains it as soon
    as is_ready() turns true, so it never grows past max_batch_size.
    """

    def __init__(self, max_batch_size: int) -> None:
        if max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")
        self._max_batch_size = max_batch_size
        self._items: deque[MessageHandle] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def add(self, handle: MessageHandle) -> None:
        self._items.append(handle)

    def is_ready(self) -> bool:
        return len(self._items) >= self._max_batch_size

    def is_empty(self) -> bool:
        return not self._items

    def drain(self) -> tuple[MessageHandle, ...]:
        """Remove and return every buffered handle in arrival order."""
        batch = tuple(self._items)
        self._items.clear()
        return batch
