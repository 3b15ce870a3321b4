"""Worker composition root: build and lifecycle-manage concrete dependencies.

Composition may: import concrete classes, call factories, store interface types,
manage high-level lifecycle.
"""
from __future__ import annotations

from typing import Any
from loguru import logger

from batch_worker.app.application.batch_consumer import BatchConsumer
from batch_worker.app.application.strategies import KeywordFailureStrategy
from batch_worker.app.config.settings import Settings
from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.infrastructure.messaging.factory import create_broker_channel
from batch_worker.app.ports.broker_channel import BrokerChannel
from batch_worker.app.ports.processing_strategy import ProcessingStrategy


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class WorkerDependencies:
    """Holds wired worker dependencies and their lifecycle."""

    def __init__(
        self,
        *,
        settings: Settings,
        strategy: ProcessingStrategy | None = None,
    ) -> None:
        self._settings = settings
        self._strategy = strategy
        self._broker_channel: BrokerChannel | None = None
        self._consumer: BatchConsumer | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def broker_channel(self) -> BrokerChannel:
        if self._broker_channel is None:
            raise RuntimeError("broker_channel is not initialized")
        return self._broker_channel

    @property
    def consumer(self) -> BatchConsumer:
        if self._consumer is None:
            raise RuntimeError("consumer is not initialized")
        return self._consumer

    async def connect(self) -> None:
        config = self._settings.batch_config()
        if self._settings.prefetch_count < config.max_batch_size:
            logger.warning(
                "prefetch_count {} is below batch_max_size {}; batches will only flush on timeout",
                self._settings.prefetch_count,
                config.max_batch_size,
            )

        self._broker_channel = create_broker_channel(self._settings)
        await self._broker_channel.connect()

        strategy = self._strategy or KeywordFailureStrategy(self._settings.failure_keyword)
        self._consumer = BatchConsumer(
            self._broker_channel,
            self._settings.queue_name,
            strategy,
            config,
            stop_on_processing_error=self._settings.stop_on_processing_error,
        )
        _log(
            "worker_wired",
            queue=self._settings.queue_name,
            max_batch_size=config.max_batch_size,
            max_wait_time=config.max_wait_time,
            ack_mode=config.ack_mode.value,
        )

    async def close(self) -> None:
        if self._broker_channel is not None:
            try:
                await self._broker_channel.close()
            except Exception as exc:
                logger.warning("broker channel close failed: {}", exc)
            self._broker_channel = None
        self._consumer = None


def create_worker_dependencies(
    settings: Settings | None = None,
    strategy: ProcessingStrategy | None = None,
) -> WorkerDependencies:
    return WorkerDependencies(settings=settings or Settings(), strategy=strategy)
