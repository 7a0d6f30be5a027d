from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from aiokafka.errors import KafkaError

from reviewfeed_service.config import settings
from reviewfeed_service.kafka_producer import KafkaProducerManager, quality_score_event


# ── Event payload ────────────────────────────────────────────────────────


def test_event_carries_previous_score_and_delta():
    event = quality_score_event("rest1", 82, 3, previous_score=50)

    assert event["event_type"] == "quality_score_updated"
    assert event["quality_score"] == 82
    assert event["previous_score"] == 50
    assert event["delta"] == 32
    assert event["changed"] is True
    assert event["review_count"] == 3
    assert event["computed_at"]


def test_cleared_score_has_no_delta():
    event = quality_score_event("rest1", None, 0, previous_score=70)

    assert event["delta"] is None
    assert event["changed"] is True


def test_unchanged_score():
    event = quality_score_event("rest1", 70, 4, previous_score=70)

    assert event["delta"] == 0
    assert event["changed"] is False


# ── Publishing ───────────────────────────────────────────────────────────


def test_publish_is_keyed_by_restaurant():
    manager = KafkaProducerManager()
    manager.producer = AsyncMock()

    assert asyncio.run(manager.publish_quality_score_updated("rest1", 82, 3, previous_score=50)) is True

    topic = manager.producer.send.await_args.args[0]
    kwargs = manager.producer.send.await_args.kwargs
    assert topic == settings.KAFKA_TOPIC_QUALITY_SCORE_UPDATED
    assert kwargs["key"] == "rest1"
    assert kwargs["value"]["previous_score"] == 50


def test_publish_without_producer_is_skipped():
    assert asyncio.run(KafkaProducerManager().publish_quality_score_updated("rest1", 82, 3)) is False


def test_send_failure_returns_false():
    manager = KafkaProducerManager()
    manager.producer = AsyncMock()
    manager.producer.send.side_effect = KafkaError("broker down")

    assert asyncio.run(manager.publish_event("topic", "rest1", {"event_type": "x"})) is False
