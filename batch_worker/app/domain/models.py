"""Domain models."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence, Union

from batch_worker.app.constants import DEFAULT_MAX_BATCH_SIZE, DEFAULT_MAX_WAIT_SECONDS


class AckMode(str, Enum):
    """How a fully successful batch is acknowledged."""

    BATCHED = "batched"
    INDIVIDUAL = "individual"


@dataclass(frozen=True)
class MessageHandle:
    """One delivered message. Acknowledgment goes through the broker channel by delivery_id."""

    payload: bytes
    delivery_id: int
    routing_key: str = ""


Batch = Sequence[MessageHandle]


@dataclass(frozen=True)
class BatchConfig:
    """Immutable batching policy for one consumer."""

    max_batch_size: int = DEFAULT_MAX_BATCH_SIZE
    max_wait_time: float = DEFAULT_MAX_WAIT_SECONDS
    ack_mode: AckMode = AckMode.INDIVIDUAL

    def __post_init__(self) -> None:
        if isinstance(self.max_batch_size, bool) or not isinstance(self.max_batch_size, int):
            raise TypeError("max_batch_size must be an int")
        if self.max_batch_size <= 0:
            raise ValueError("max_batch_size must be positive")
        if not isinstance(self.max_wait_time, (int, float)) or isinstance(self.max_wait_time, bool):
            raise TypeError("max_wait_time must be a number of seconds")
        if self.max_wait_time <= 0:
            raise ValueError("max_wait_time must be positive")
        if not isinstance(self.ack_mode, AckMode):
            object.__setattr__(self, "ack_mode", AckMode(str(self.ack_mode).strip().lower()))


@dataclass(frozen=True)
class Success:
    """Every message in the batch was processed."""


@dataclass(frozen=True)
class PartialFailure:
    """Some messages failed; failed_ids holds their delivery ids."""

    failed_ids: frozenset[int] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if not isinstance(self.failed_ids, frozenset):
            object.__setattr__(self, "failed_ids", frozenset(self.failed_ids))


@dataclass(frozen=True)
class TotalFailure:
    """Every message in the batch failed."""


ProcessOutcome = Union[Success, PartialFailure, TotalFailure]


def outcome_from_failures(batch: Batch, failed_ids: Iterable[int]) -> ProcessOutcome:
    """Classify a batch result from the ids that failed.

    No failures is Success, all of the batch failing is TotalFailure, anything
    in between is PartialFailure. Ids outside the batch are dropped.
    """
    batch_ids = {handle.delivery_id for handle in batch}
    failed = frozenset(failed_ids) & batch_ids
    if not failed:
        return Success()
    if failed == batch_ids:
        return TotalFailure()
    return PartialFailure(failed)
