"""
FraudGuard — Kafka Producer & Consumer

Producer  → used by the /transactions endpoints to publish assessment events.
Consumer  → background worker that pulls "transaction recorded" events,
            evaluates each transaction, and publishes the assessment
            downstream.
"""

import json
import logging
from typing import Any, Dict, Optional

from aiokafka import AIOKafkaProducer, AIOKafkaConsumer

from app.config import settings
from app.models.models import SuspiciousTransaction
from app.services.observability import Metrics

logger = logging.getLogger("fraudguard.kafka")


def assessment_event(assessment: SuspiciousTransaction) -> Dict[str, Any]:
    """Wire format of an assessment published on KAFKA_ASSESSMENT_TOPIC."""
    return {
        "transaction_id": assessment.transaction_id,
        "risk_score": assessment.risk_score,
        "risk_level": assessment.risk_level,
        "reasons": assessment.reasons,
        "triggered_rules": list(assessment.triggered_rules or []),
        "rule_set_version": assessment.rule_set_version,
    }


# ===========================================================================
# Producer (singleton, lifecycle managed by FastAPI app.state)
# ===========================================================================
class KafkaProducer:
    def __init__(self):
        self._producer: Optional[AIOKafkaProducer] = None

    async def start(self):
        self._producer = AIOKafkaProducer(
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
            key_serializer=lambda k: k.encode("utf-8") if k else None,
            acks="all",              # strongest durability guarantee
            compression_type="gzip",
            request_timeout_ms=settings.KAFKA_TIMEOUT_MS,
        )
        await self._producer.start()
        logger.info("Kafka producer started — brokers=%s", settings.KAFKA_BOOTSTRAP_SERVERS)

    async def stop(self):
        if self._producer:
            await self._producer.stop()
            logger.info("Kafka producer stopped.")

    def is_ready(self) -> bool:
        return self._producer is not None and not self._producer._closed

    async def send(self, topic: str, value: Dict[str, Any], key: Optional[str] = None):
        if self._producer is None:
            raise RuntimeError("KafkaProducer has not been started.")
        try:
            await self._producer.send(topic=topic, value=value, key=key)
        except Exception:
            Metrics.kafka_messages_errors_total.labels(topic=topic).inc()
            raise
        Metrics.kafka_messages_sent_total.labels(topic=topic).inc()
        logger.debug("Kafka send → topic=%s key=%s", topic, key)


async def publish_assessment(producer: Optional[KafkaProducer], assessment: SuspiciousTransaction) -> bool:
    """
    Best-effort publish of an assessment event.

    The assessment is already committed; a broker failure is logged and
    reported as False instead of failing the request.
    """
    if producer is None:
        return False
    try:
        await producer.send(
            topic=settings.KAFKA_ASSESSMENT_TOPIC,
            value=assessment_event(assessment),
            key=assessment.transaction_id,
        )
    except Exception as exc:
        logger.warning("Assessment publish failed for txn=%s: %s", assessment.transaction_id, exc)
        return False
    return True


# ===========================================================================
# Consumer  (run as a background asyncio task)
# ===========================================================================
class KafkaConsumer:
    """
    Subscribes to the transaction-recorded topic, evaluates each referenced
    transaction, and publishes the assessment to the assessment topic.

    Instantiate and call `run()` inside an asyncio task, e.g. from a
    management script or a separate Kubernetes Deployment.
    """

    def __init__(self):
        self._consumer: Optional[AIOKafkaConsumer] = None
        self._producer: KafkaProducer = KafkaProducer()
        self._running = False

    async def start(self):
        self._consumer = AIOKafkaConsumer(
            settings.KAFKA_TRANSACTION_TOPIC,
            bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS,
            group_id=settings.KAFKA_CONSUMER_GROUP,
            value_deserializer=lambda v: json.loads(v.decode("utf-8")),
            auto_offset_reset="earliest",
            enable_auto_commit=True,
            auto_commit_interval_ms=1_000,
        )
        await self._consumer.start()
        await self._producer.start()
        self._running = True
        logger.info("Kafka consumer started — group=%s", settings.KAFKA_CONSUMER_GROUP)

    async def stop(self):
        self._running = False
        if self._consumer:
            await self._consumer.stop()
        await self._producer.stop()
        logger.info("Kafka consumer stopped.")

    async def run(self):
        """Main loop; one message is one evaluation."""
        await self.start()
        try:
            async for msg in self._consumer:
                if not self._running:
                    break
                logger.debug(
                    "Kafka recv ← topic=%s partition=%d offset=%d",
                    msg.topic, msg.partition, msg.offset,
                )
                await self._process_message(msg.value)
        finally:
            await self.stop()

    # ------------------------------------------------------------------
    # Hook for the evaluation pipeline
    # ------------------------------------------------------------------
    async def _process_message(self, payload: Dict[str, Any]) -> Optional[SuspiciousTransaction]:
        """
        Evaluate the transaction named in *payload* and publish the result.

        Unknown transactions are logged and skipped; store errors propagate
        so the message is redelivered.
        """
        from app.services.db import AsyncSessionLocal
        from app.services.errors import NotFound
        from app.services.scorer import score_transaction

        transaction_id = (payload or {}).get("transaction_id")
        if not transaction_id:
            logger.warning("Dropping event without transaction_id: %s", payload)
            return None

        async with AsyncSessionLocal() as db:
            try:
                assessment = await score_transaction(db, transaction_id, actor="kafka-consumer")
                await db.commit()
            except NotFound:
                await db.rollback()
                logger.warning("Event references unknown transaction %s", transaction_id)
                return None
            except Exception:
                await db.rollback()
                raise

        await publish_assessment(self._producer, assessment)
        logger.info(
            "Assessment published → topic=%s txn=%s",
            settings.KAFKA_ASSESSMENT_TOPIC, transaction_id,
        )
        return assessment
