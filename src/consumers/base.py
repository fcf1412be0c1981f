"""Base Kafka consumer with event-type routing."""

from collections.abc import Callable
from typing import Any

import structlog
from aiokafka import AIOKafkaConsumer

from src.shared.kafka_utils import decode_event

logger = structlog.get_logger()


class BaseConsumer:
    def __init__(
        self,
        topics: list[str],
        bootstrap_servers: str,
        group_id: str,
        handlers: dict[str, Callable] | None = None,
        auto_offset_reset: str = "earliest",
    ):
        self.topics = topics
        self.bootstrap_servers = bootstrap_servers
        self.group_id = group_id
        self.handlers: dict[str, Callable] = handlers or {}
        self.auto_offset_reset = auto_offset_reset
        self._consumer: AIOKafkaConsumer | None = None
        self._running = False

    def register_handler(self, event_type: str, handler: Callable) -> None:
        self.handlers[event_type] = handler

    async def start(self) -> None:
        self._consumer = AIOKafkaConsumer(
            *self.topics,
            bootstrap_servers=self.bootstrap_servers,
            group_id=self.group_id,
            value_deserializer=decode_event,
            auto_offset_reset=self.auto_offset_reset,
            enable_auto_commit=True,
        )
        await self._consumer.start()
        self._running = True
        logger.info("consumer_started", topics=self.topics, group_id=self.group_id)
        try:
            async for msg in self._consumer:
                await self._process_message(msg)
        finally:
            await self._consumer.stop()

    async def _process_message(self, msg: Any) -> None:
        try:
            await self.dispatch(msg.value)
        except Exception:
            logger.exception("message_processing_error", topic=msg.topic, offset=msg.offset)

    async def dispatch(self, event: dict[str, Any]) -> None:
        """Route one decoded event to the handler registered for its type."""
        event_type = event.get("event_type", "unknown")
        handler = self.handlers.get(event_type)
        if handler:
            await handler(event)
        else:
            logger.debug("no_handler_for_event", event_type=event_type)

    async def stop(self) -> None:
        self._running = False
        if self._consumer:
            await self._consumer.stop()
            logger.info("consumer_stopped", topics=self.topics)
