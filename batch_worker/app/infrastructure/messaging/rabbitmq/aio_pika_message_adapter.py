"""Adapter: turn an aio_pika delivery into a transport-agnostic MessageHandle."""
from __future__ import annotations

from aio_pika.abc import AbstractIncomingMessage

from batch_worker.app.domain.models import MessageHandle


def to_message_handle(message: AbstractIncomingMessage) -> MessageHandle:
    if message.delivery_tag is None:
        raise ValueError("message has no delivery tag (consumed with no_ack?)")
    return MessageHandle(
        payload=bytes(message.body),
        delivery_id=int(message.delivery_tag),
        routing_key=message.routing_key or "",
    )
