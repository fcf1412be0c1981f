"""Kafka producer helpers."""

import json

import structlog
from aiokafka import AIOKafkaProducer

logger = structlog.get_logger()


async def create_producer(bootstrap_servers: str) -> AIOKafkaProducer:
    """Create and start a Kafka producer.

    Values are passed through untouched; callers send pre-encoded bytes.
    """
    producer = AIOKafkaProducer(bootstrap_servers=bootstrap_servers)
    await producer.start()
    logger.info("kafka_producer_started", bootstrap_servers=bootstrap_servers)
    return producer


def decode_event(raw: bytes) -> dict:
    """Deserialize a JSON Kafka message value."""
    return json.loads(raw.decode("utf-8"))
