from __future__ import annotations

import asyncio

import pytest

from batch_worker.app.application.strategies import KeywordFailureStrategy
from batch_worker.app.domain.models import MessageHandle, PartialFailure, Success, TotalFailure


def _handle(delivery_id: int, payload: str) -> MessageHandle:
    return MessageHandle(payload=payload.encode(), delivery_id=delivery_id, routing_key="batch_test_queue")


def test_keyword_strategy_all_clean_is_success():
    strategy = KeywordFailureStrategy()
    batch = [_handle(1, "hello"), _handle(2, "world")]

    assert asyncio.run(strategy(batch)) == Success()


def test_keyword_strategy_marks_matching_messages_failed():
    strategy = KeywordFailureStrategy()
    batch = [_handle(1, "ok"), _handle(2, "this is an ERROR"), _handle(3, "fine")]

    assert asyncio.run(strategy(batch)) == PartialFailure(frozenset({2}))


def test_keyword_strategy_all_matching_is_total_failure():
    strategy = KeywordFailureStrategy("boom")
    batch = [_handle(1, "boom"), _handle(2, "Boom!")]

    assert asyncio.run(strategy(batch)) == TotalFailure()


def test_keyword_strategy_tolerates_non_utf8_payload():
    strategy = KeywordFailureStrategy()
    batch = [MessageHandle(payload=b"\xff\xfe", delivery_id=1)]

    assert asyncio.run(strategy(batch)) == Success()


def test_keyword_strategy_rejects_empty_keyword():
    with pytest.raises(ValueError):
        KeywordFailureStrategy("")
