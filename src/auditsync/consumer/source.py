"""
Kafka stream source with manual offset management.

This module provides:
- Subscription with auto commit disabled
- Cancellable fetching (polls run in a worker thread)
- Synchronous per-record commits
- Rewinding a partition so a failed record is redelivered
"""

import asyncio
import logging
from typing import Optional

from confluent_kafka import Consumer, KafkaError, KafkaException, TopicPartition

from ..config import KafkaConfig

logger = logging.getLogger(__name__)


class KafkaAuditSource:
    """
    At-least-once record source backed by confluent-kafka.

    Offsets only advance through commit(); a record that is never
    committed is delivered again after rewind() or a rebalance.
    """

    def __init__(self, kafka_config: KafkaConfig):
        self.config = kafka_config
        self.consumer: Optional[Consumer] = None

    def subscribe(self, topic: Optional[str] = None) -> None:
        """Create the consumer and subscribe to a topic (default from config)."""
        topic = topic or self.config.topic
        if self.consumer is None:
            self.consumer = Consumer(self.config.to_consumer_config())

        self.consumer.subscribe([topic], on_assign=self._on_assign, on_revoke=self._on_revoke)
        logger.info(f"Subscribed to Kafka topic: {topic}")

    def _on_assign(self, consumer: Consumer, partitions) -> None:
        logger.info(f"Partitions assigned: {[p.partition for p in partitions]}")

    def _on_revoke(self, consumer: Consumer, partitions) -> None:
        logger.info(f"Partitions revoked: {[p.partition for p in partitions]}")

    async def fetch(self, shutdown_event: asyncio.Event):
        """
        Wait for the next record.

        Args:
            shutdown_event: Checked between polls; once set, fetch returns

        Returns:
            The next record, or None when shutdown was requested

        Raises:
            KafkaException: On a fatal broker error
        """
        if self.consumer is None:
            raise RuntimeError("subscribe() must be called before fetch()")

        timeout = self.config.poll_timeout_ms / 1000.0

        while not shutdown_event.is_set():
            message = await asyncio.to_thread(self.consumer.poll, timeout)
            if message is None:
                continue

            error = message.error()
            if error is None:
                return message

            if error.code() == KafkaError._PARTITION_EOF:
                logger.debug(f"Reached end of partition {message.partition()}")
            elif error.fatal():
                raise KafkaException(error)
            else:
                logger.error(f"Kafka error: {error}")

        return None

    def commit(self, message) -> None:
        """Commit the offset following this record."""
        self.consumer.commit(message=message, asynchronous=False)
        logger.debug(
            f"Committed offset {message.offset()} for partition {message.partition()}"
        )

    def rewind(self, message) -> None:
        """Seek the record's partition back so the record is fetched again."""
        try:
            self.consumer.seek(
                TopicPartition(message.topic(), message.partition(), message.offset())
            )
            logger.debug(
                f"Rewound {message.topic()}:{message.partition()} to offset {message.offset()}"
            )
        except KafkaException as e:
            # Partition no longer assigned; the new owner resumes from the committed offset
            logger.warning(
                f"Could not rewind {message.topic()}:{message.partition()}:{message.offset()}: {e}"
            )

    def close(self) -> None:
        if self.consumer is not None:
            try:
                self.consumer.close()
                logger.info("Kafka consumer closed")
            except KafkaException as e:
                logger.warning(f"Error during Kafka consumer close: {e}")
            finally:
                self.consumer = None
