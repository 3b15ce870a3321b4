"""
RabbitMQ broker channel: one connection, one channel, manual acknowledgment.

Lifecycle:
  DISCONNECTED -> CONNECTING -> CONNECTED -> READY (qos applied).
  On close: READY -> CLOSING -> close channel/connection -> CLOSED.
  There is no reconnect: a closed channel ends the delivery stream with
  BrokerStreamError and the owner decides what to do next.

Acknowledgment:
  Deliveries are tracked by delivery tag until they are acked or nacked, so
  acks go through the channel by id instead of through the message object.
  A cumulative ack (multiple=True) settles every tracked tag up to and
  including the given one.
"""
from __future__ import annotations

from typing import Any, AsyncIterator
from urllib.parse import quote

import aio_pika
from aio_pika.abc import AbstractChannel, AbstractConnection, AbstractIncomingMessage
from aio_pika.exceptions import AMQPError, ChannelInvalidStateError
from loguru import logger

from batch_worker.app.config.settings import Settings
from batch_worker.app.core import SERVICE_NAME
from batch_worker.app.domain.models import MessageHandle
from batch_worker.app.infrastructure.messaging.rabbitmq.aio_pika_message_adapter import to_message_handle
from batch_worker.app.infrastructure.messaging.rabbitmq.constants import ChannelState
from batch_worker.app.ports.broker_channel import BrokerAckError, BrokerStreamError

_STREAM_ERRORS = (AMQPError, ChannelInvalidStateError, ConnectionError)


def _log(event: str, **kwargs: Any) -> None:
    logger.bind(service_name=SERVICE_NAME, event=event, **kwargs).info("")


class RabbitMQBrokerChannel:
    """BrokerChannel implementation"""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._state = ChannelState.DISCONNECTED
        self._connection: AbstractConnection | None = None
        self._channel: AbstractChannel | None = None
        self._pending: dict[int, AbstractIncomingMessage] = {}

    @property
    def state(self) -> ChannelState:
        return self._state

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _set_state(self, state: ChannelState) -> None:
        self._state = state

    def _build_amqp_url(self) -> str:
        vhost = self._settings.broker_vhost.strip("/")
        return (
            f"amqp://{quote(self._settings.broker_user, safe='')}:"
            f"{quote(self._settings.broker_password, safe='')}"
            f"@{self._settings.broker_host}:{self._settings.broker_port}/"
            f"{quote(vhost, safe='')}"
        )

    async def connect(self) -> None:
        self._set_state(ChannelState.CONNECTING)
        _log("rmq_connecting", host=self._settings.broker_host, port=self._settings.broker_port)
        try:
            self._connection = await aio_pika.connect(self._build_amqp_url())
        except Exception as e:
            logger.warning("rmq connect failed: {}", e)
            self._set_state(ChannelState.DISCONNECTED)
            raise
        self._set_state(ChannelState.CONNECTED)
        _log("rmq_connected")
        try:
            self._channel = await self._connection.channel()
            await self._channel.set_qos(prefetch_count=self._settings.prefetch_count)
        except Exception as e:
            logger.warning("rmq channel setup failed: {}", e)
            await self._close_channel_and_connection()
            self._set_state(ChannelState.DISCONNECTED)
            raise
        self._set_state(ChannelState.READY)

    async def subscribe(self, queue_name: str) -> AsyncIterator[MessageHandle]:
        if self._channel is None:
            raise RuntimeError("broker channel not connected")
        consume_kwargs: dict[str, Any] = {"no_ack": False}
        if self._settings.consumer_tag:
            consume_kwargs["consumer_tag"] = self._settings.consumer_tag
        try:
            # Passive check only; declaring the queue is the surrounding application's job.
            queue = await self._channel.get_queue(queue_name, ensure=True)
            async with queue.iterator(**consume_kwargs) as messages:
                _log("rmq_subscribed", queue=queue_name)
                async for message in messages:
                    handle = to_message_handle(message)
                    self._pending[handle.delivery_id] = message
                    yield handle
        except _STREAM_ERRORS as exc:
            raise BrokerStreamError(f"delivery stream for {queue_name} failed: {exc}") from exc

    async def acknowledge(self, delivery_id: int, *, cumulative: bool = False) -> None:
        message = self._pending.pop(delivery_id, None)
        if message is None:
            raise BrokerAckError(f"unknown or already settled delivery {delivery_id}")
        if cumulative:
            for tag in [tag for tag in self._pending if tag < delivery_id]:
                del self._pending[tag]
        try:
            await message.ack(multiple=cumulative)
        except Exception as exc:
            raise BrokerAckError(f"ack failed for delivery {delivery_id}: {exc}") from exc

    async def negative_acknowledge(self, delivery_id: int, *, requeue: bool = True) -> None:
        message = self._pending.pop(delivery_id, None)
        if message is None:
            raise BrokerAckError(f"unknown or already settled delivery {delivery_id}")
        try:
            await message.nack(requeue=requeue)
        except Exception as exc:
            raise BrokerAckError(f"nack failed for delivery {delivery_id}: {exc}") from exc

    async def close(self) -> None:
        self._set_state(ChannelState.CLOSING)
        _log("rmq_closing", unsettled=len(self._pending))
        self._pending.clear()
        await self._close_channel_and_connection()
        self._set_state(ChannelState.CLOSED)

    async def _close_channel_and_connection(self) -> None:
        if self._channel:
            try:
                await self._channel.close()
            except Exception as e:
                logger.warning("channel close failed (continuing to close connection): {}", e)
            self._channel = None
        if self._connection:
            try:
                await self._connection.close()
            except Exception as e:
                logger.warning("connection close failed: {}", e)
            self._connection = None
