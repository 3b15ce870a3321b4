"""Broker channel factory: selects implementation from config. Only place that imports concrete channels."""
from __future__ import annotations

from batch_worker.app.config.settings import Settings
from batch_worker.app.infrastructure.messaging.rabbitmq.rabbitmq_channel import RabbitMQBrokerChannel
from batch_worker.app.ports.broker_channel import BrokerChannel


def create_broker_channel(settings: Settings) -> BrokerChannel:
    backend = settings.consumer_backend.strip().lower()

    if backend == "rabbitmq":
        return RabbitMQBrokerChannel(settings)

    raise ValueError(f"Unsupported consumer backend: {backend}")
