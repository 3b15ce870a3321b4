"""Port: broker channel used for receiving and acknowledging messages.

Application code depends on this port; infrastructure (e.g. aio_pika)
implements it. A channel is not safe for concurrent use, so one channel is
driven by exactly one consumer loop.
"""
from __future__ import annotations

from typing import AsyncIterator, Protocol, runtime_checkable

from batch_worker.app.domain.models import MessageHandle


class BrokerError(Exception):
    """Base for broker channel failures."""


class BrokerStreamError(BrokerError):
    """Raised when the delivery stream fails or the channel closes under it."""


class BrokerAckError(BrokerError):
    """Raised when a single ack or nack call fails."""


@runtime_checkable
class BrokerChannel(Protocol):
    """Receive and acknowledge messages on one channel."""

    async def connect(self) -> None: ...

    def subscribe(self, queue_name: str) -> AsyncIterator[MessageHandle]:
        """Lazy stream of deliveries; ends when the consumer is cancelled or the channel closes."""
        ...

    async def acknowledge(self, delivery_id: int, *, cumulative: bool = False) -> None:
        """Ack one delivery, or every delivery up to and including it when cumulative."""
        ...

    async def negative_acknowledge(self, delivery_id: int, *, requeue: bool = True) -> None: ...

    async def close(self) -> None:
        """Release resources. No-op allowed if nothing to close."""
        ...
