"""
Batch consumer: accumulate deliveries and flush them by size or by timer.

Loop:
  IDLE -> ACCUMULATING (first message buffered) -> FLUSHING (buffer full, or
  timer tick with a non-empty buffer) -> IDLE.
  Stream end, stream error, strategy error (when stop_on_processing_error) or
  cancellation -> STOPPED.

Timer:
  Ticks run on a fixed schedule of max_wait_time anchored at loop start,
  independent of arrivals. A tick with an empty buffer is a no-op. Ticks that
  fall due while a flush is running are coalesced into one.

Concurrency:
  A single task owns the buffer, the processor call and the channel. Flushes
  are sequential; the next message is not buffered until the current flush,
  including its ack/nack calls, has completed. Messages still buffered when
  the loop stops are left unacknowledged for the broker to redeliver.
"""
from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

from loguru import logger

from batch_worker.app.application.batch_processor import BatchProcessor
from batch_worker.app.constants import ConsumerState
from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.domain.batch_buffer import BatchBuffer
from batch_worker.app.domain.models import BatchConfig, MessageHandle
from batch_worker.app.ports.broker_channel import BrokerChannel, BrokerStreamError
from batch_worker.app.ports.processing_strategy import ProcessingStrategy


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


async def _receive(stream: AsyncIterator[MessageHandle]) -> MessageHandle | None:
    """Next delivery, or None once the stream is exhausted."""
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return None


class BatchConsumer:
    """Consumes one queue in batches. Run one instance per queue."""

    def __init__(
        self,
        channel: BrokerChannel,
        queue_name: str,
        strategy: ProcessingStrategy,
        config: BatchConfig | None = None,
        *,
        stop_on_processing_error: bool = True,
    ) -> None:
        self._channel = channel
        self._queue_name = queue_name
        self._strategy = strategy
        self._config = config or BatchConfig()
        self._buffer = BatchBuffer(self._config.max_batch_size)
        self._processor = BatchProcessor(channel, self._config)
        self._stop_on_processing_error = stop_on_processing_error
        self._state = ConsumerState.IDLE
        self._flush_count = 0

    @property
    def state(self) -> ConsumerState:
        return self._state

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def flush_count(self) -> int:
        return self._flush_count

    def _set_state(self, state: ConsumerState) -> None:
        self._state = state

    async def run(self) -> None:
        """Consume until the stream ends; stream and (by default) strategy errors propagate."""
        loop = asyncio.get_running_loop()
        interval = float(self._config.max_wait_time)
        stream = self._channel.subscribe(self._queue_name)
        receive: asyncio.Task[MessageHandle | None] | None = None
        next_tick = loop.time() + interval

        self._set_state(ConsumerState.IDLE)
        _log(
            "batch_consumer_started",
            queue=self._queue_name,
            max_batch_size=self._config.max_batch_size,
            max_wait_time=interval,
            ack_mode=self._config.ack_mode.value,
        )
        try:
            while True:
                now = loop.time()
                if now >= next_tick:
                    next_tick += interval
                    if next_tick <= now:
                        next_tick = now + interval
                    if not self._buffer.is_empty():
                        _log("batch_timeout_reached", buffered=len(self._buffer))
                        await self._flush("timeout")
                    continue

                if receive is None:
                    receive = asyncio.create_task(_receive(stream))
                done, _ = await asyncio.wait({receive}, timeout=next_tick - now)
                if receive not in done:
                    continue

                task, receive = receive, None
                try:
                    handle = task.result()
                except BrokerStreamError:
                    raise
                except Exception as exc:
                    raise BrokerStreamError(f"delivery stream failed: {exc}") from exc

                if handle is None:
                    _log("consumer_stream_ended", queue=self._queue_name, buffered=len(self._buffer))
                    return

                self._buffer.add(handle)
                self._set_state(ConsumerState.ACCUMULATING)
                logger.debug(
                    "buffered delivery {} ({}/{})",
                    handle.delivery_id,
                    len(self._buffer),
                    self._config.max_batch_size,
                )
                if self._buffer.is_ready():
                    _log("batch_size_reached", buffered=len(self._buffer))
                    await self._flush("size")
        finally:
            if receive is not None and not receive.done():
                receive.cancel()
                await asyncio.wait({receive})
            await self._close_stream(stream)
            if not self._buffer.is_empty():
                _log("unsettled_messages_abandoned", count=len(self._buffer))
            self._set_state(ConsumerState.STOPPED)
            _log("consumer_stopped", queue=self._queue_name, flushes=self._flush_count)

    async def _flush(self, trigger: str) -> None:
        batch = self._buffer.drain()
        self._set_state(ConsumerState.FLUSHING)
        try:
            await self._processor.process(batch, self._strategy)
        except Exception as exc:
            if self._stop_on_processing_error:
                raise
            logger.warning("batch processing failed, continuing: {}", exc)
        finally:
            self._flush_count += 1
        self._set_state(ConsumerState.IDLE)
        _log("batch_flushed", trigger=trigger, batch_size=len(batch))

    async def _close_stream(self, stream: AsyncIterator[MessageHandle]) -> None:
        aclose = getattr(stream, "aclose", None)
        if aclose is None:
            return
        try:
            await aclose()
        except Exception as exc:
            logger.warning("closing delivery stream failed: {}", exc)
