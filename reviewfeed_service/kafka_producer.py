"""
Kafka producer for restaurant quality score events
"""
from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaError
from datetime import datetime, timezone
from typing import Optional, Dict, Any
import json
import logging

from .config import settings

logger = logging.getLogger(__name__)

QUALITY_SCORE_UPDATED = "quality_score_updated"


def quality_score_event(
    restaurant_id: str,
    quality_score: Optional[int],
    review_count: int,
    previous_score: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Payload of a quality score update

    ``quality_score`` is None when no usable reviews remain; consumers must
    clear the displayed score rather than show 0. ``delta`` is only set when
    both scores are known.
    """
    delta = None
    if quality_score is not None and previous_score is not None:
        delta = quality_score - previous_score

    return {
        "event_type": QUALITY_SCORE_UPDATED,
        "restaurant_id": restaurant_id,
        "quality_score": quality_score,
        "previous_score": previous_score,
        "delta": delta,
        "changed": quality_score != previous_score,
        "review_count": review_count,
        "computed_at": datetime.now(timezone.utc).isoformat(),
    }


class KafkaProducerManager:
    """Owns the producer that announces recomputed restaurant scores"""

    def __init__(self):
        self.producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        if not settings.KAFKA_ENABLED:
            logger.warning("Kafka is disabled, quality score events will not be published")
            return

        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
                value_serializer=lambda v: json.dumps(v, default=str).encode('utf-8'),
                key_serializer=lambda k: k.encode('utf-8') if k else None,
            )
            await self.producer.start()
            logger.info(f"Kafka producer connected to {settings.KAFKA_BOOTSTRAP_SERVERS}")
        except KafkaError as e:
            logger.error(f"Failed to start Kafka producer: {e}")
            self.producer = None

    async def stop(self):
        if self.producer:
            await self.producer.stop()
            self.producer = None
            logger.info("Kafka producer stopped")

    async def publish_event(self, topic: str, key: str, event_data: Dict[str, Any]) -> bool:
        """Send one keyed event; False when the producer is down or the send failed"""
        if not self.producer:
            logger.debug(f"Kafka producer not available, dropping '{event_data.get('event_type')}' for {key}")
            return False

        try:
            await self.producer.send(topic, value=event_data, key=key)
            logger.debug(f"Published '{event_data.get('event_type')}' to '{topic}' for {key}")
            return True
        except KafkaError as e:
            logger.error(f"Failed to publish event to topic '{topic}': {e}")
            return False

    async def publish_quality_score_updated(
        self,
        restaurant_id: str,
        quality_score: Optional[int],
        review_count: int,
        previous_score: Optional[int] = None,
    ) -> bool:
        """Announce a recomputed score, keyed by restaurant so updates stay ordered"""
        event = quality_score_event(restaurant_id, quality_score, review_count, previous_score)
        if not event["changed"]:
            logger.info(f"Quality score for restaurant {restaurant_id} unchanged at {quality_score}")
        return await self.publish_event(settings.KAFKA_TOPIC_QUALITY_SCORE_UPDATED, restaurant_id, event)


# Global Kafka producer instance
kafka_producer = KafkaProducerManager()
