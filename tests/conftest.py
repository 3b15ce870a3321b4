from __future__ import annotations

import pytest

from tests.fakes import FakeBrokerChannel, RecordingStrategy


class _Settings:
    """Plain stand-in for Settings; only the attributes the broker channel reads."""

    broker_user = "guest"
    broker_password = "guest"
    broker_host = "localhost"
    broker_port = 5672
    broker_vhost = "/"
    queue_name = "batch_test_queue"
    consumer_tag = "batch_consumer"
    prefetch_count = 50


@pytest.fixture()
def fake_settings() -> _Settings:
    return _Settings()


@pytest.fixture()
def strategy() -> RecordingStrategy:
    return RecordingStrategy()


@pytest.fixture()
def channel() -> FakeBrokerChannel:
    return FakeBrokerChannel()
