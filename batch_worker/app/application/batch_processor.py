from __future__ import annotations

from typing import Any

from loguru import logger

from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.domain.models import (
    AckMode,
    Batch,
    BatchConfig,
    PartialFailure,
    Success,
    TotalFailure,
)
from batch_worker.app.ports.broker_channel import BrokerChannel
from batch_worker.app.ports.processing_strategy import ProcessingStrategy


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class InvalidOutcomeError(TypeError):
    """Raised when a strategy returns something other than a ProcessOutcome."""


class BatchProcessor:
    """
    Runs a processing strategy over a drained batch and settles every message.

    Every handle in the batch gets exactly one ack or nack before process()
    returns, whatever the strategy does. Broker ack/nack failures are logged
    and skipped; the broker redelivers anything left unsettled. Strategy
    errors nack the whole batch with requeue and are re-raised.

    A cumulative ack covers every outstanding delivery on the channel, so once
    a nack has failed, batched mode falls back to individual acks. Otherwise
    the cumulative ack would settle the message that was meant to be requeued.
    """

    def __init__(self, channel: BrokerChannel, config: BatchConfig) -> None:
        self._channel = channel
        self._config = config
        self._failed_nack_ids: set[int] = set()

    @property
    def config(self) -> BatchConfig:
        return self._config

    async def process(self, batch: Batch, strategy: ProcessingStrategy) -> None:
        if not batch:
            return

        settled: set[int] = set()
        try:
            outcome = await strategy(batch)
            if not isinstance(outcome, (Success, PartialFailure, TotalFailure)):
                raise InvalidOutcomeError(
                    f"strategy returned {type(outcome).__name__}, expected a ProcessOutcome"
                )
        except Exception as exc:
            logger.exception("batch processing failed: {}", exc)
            _log("batch_strategy_failed", batch_size=len(batch), error=str(exc))
            for handle in batch:
                await self._nack(handle.delivery_id, settled)
            raise

        if isinstance(outcome, Success):
            await self._ack_success(batch, settled)
        elif isinstance(outcome, PartialFailure):
            await self._settle_partial(batch, outcome.failed_ids, settled)
        else:
            for handle in batch:
                await self._nack(handle.delivery_id, settled)
            _log("batch_total_failure", batch_size=len(batch))

    async def _ack_success(self, batch: Batch, settled: set[int]) -> None:
        if self._config.ack_mode == AckMode.BATCHED and self._failed_nack_ids:
            logger.warning(
                "nack failed earlier for deliveries {}, acking individually",
                sorted(self._failed_nack_ids),
            )
        elif self._config.ack_mode == AckMode.BATCHED:
            # Delivery ids are monotonic per channel, so acking the highest
            # id with multiple=True covers exactly this batch.
            last_id = max(handle.delivery_id for handle in batch)
            settled.update(handle.delivery_id for handle in batch)
            try:
                await self._channel.acknowledge(last_id, cumulative=True)
            except Exception as exc:
                logger.warning("cumulative ack failed for delivery {}: {}", last_id, exc)
                _log("ack_failed", delivery_id=last_id, cumulative=True, error=str(exc))
                return
            _log("batch_acked", batch_size=len(batch), up_to_delivery_id=last_id, cumulative=True)
            return

        for handle in batch:
            await self._ack(handle.delivery_id, settled)
        _log("batch_acked", batch_size=len(batch), cumulative=False)

    async def _settle_partial(self, batch: Batch, failed_ids: frozenset[int], settled: set[int]) -> None:
        batch_ids = {handle.delivery_id for handle in batch}
        unknown = failed_ids - batch_ids
        if unknown:
            logger.warning("ignoring failed ids not in batch: {}", sorted(unknown))

        nacked = 0
        for handle in batch:
            if handle.delivery_id in failed_ids:
                await self._nack(handle.delivery_id, settled)
                nacked += 1
            else:
                await self._ack(handle.delivery_id, settled)
        _log(
            "batch_partial_failure",
            batch_size=len(batch),
            succeeded=len(batch) - nacked,
            failed=nacked,
        )

    async def _ack(self, delivery_id: int, settled: set[int]) -> None:
        if delivery_id in settled:
            logger.warning("delivery {} already settled, skipping ack", delivery_id)
            return
        settled.add(delivery_id)
        try:
            await self._channel.acknowledge(delivery_id, cumulative=False)
        except Exception as exc:
            logger.warning("ack failed for delivery {}: {}", delivery_id, exc)
            _log("ack_failed", delivery_id=delivery_id, cumulative=False, error=str(exc))

    async def _nack(self, delivery_id: int, settled: set[int]) -> None:
        if delivery_id in settled:
            logger.warning("delivery {} already settled, skipping nack", delivery_id)
            return
        settled.add(delivery_id)
        try:
            await self._channel.negative_acknowledge(delivery_id, requeue=True)
        except Exception as exc:
            self._failed_nack_ids.add(delivery_id)
            logger.warning("nack failed for delivery {}: {}", delivery_id, exc)
            _log("nack_failed", delivery_id=delivery_id, error=str(exc))
