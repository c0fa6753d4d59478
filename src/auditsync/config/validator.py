"""
Configuration validation utilities.

Checks that the audit store and the Kafka cluster are reachable and set up
before the ingestion loop starts.
"""

import asyncio
import logging
from typing import Dict, Any

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import create_async_engine
from confluent_kafka import Consumer, KafkaException

from .settings import AppConfig

logger = logging.getLogger(__name__)

REQUIRED_TABLES = frozenset({
    "targets",
    "target_rules",
    "audit_logs",
    "cases",
    "case_extractions",
})


class ConfigValidator:
    """Configuration validator for the AuditSync consumer."""

    def __init__(self, config: AppConfig):
        self.config = config

    async def validate_all(self) -> Dict[str, Any]:
        """
        Validate all configuration components.

        Returns:
            Dict containing validation results for each component
        """
        try:
            self.config.validate()
            config_status = {"status": "healthy"}
        except ValueError as e:
            config_status = {"status": "failed", "error": str(e)}

        results = {
            "config": config_status,
            "database": await self.validate_database(),
            "kafka": await self.validate_kafka(),
            "overall_status": "healthy",
        }

        failed_components = [
            component for component, status in results.items()
            if isinstance(status, dict) and status.get("status") == "failed"
        ]

        if failed_components:
            results["overall_status"] = "unhealthy"
            results["failed_components"] = failed_components

        return results

    async def validate_database(self) -> Dict[str, Any]:
        """
        Check that the audit store is reachable and ready.

        The store must hold every table in REQUIRED_TABLES. A store with no
        registered targets is reported as a warning, since every event
        would then be skipped by the target gate.
        """
        engine = create_async_engine(self.config.database.connection_string)
        try:
            async with engine.connect() as conn:
                existing_tables = set(
                    await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())
                )
                missing_tables = REQUIRED_TABLES - existing_tables
                if missing_tables:
                    return {
                        "status": "failed",
                        "error": f"Audit store is missing tables: {sorted(missing_tables)}",
                        "existing_tables": sorted(existing_tables),
                    }

                target_count = await conn.scalar(text("SELECT COUNT(*) FROM targets"))

            if not target_count:
                return {
                    "status": "warning",
                    "message": "No targets registered, every audit event will be skipped",
                    "targets": 0,
                }

            return {
                "status": "healthy",
                "message": f"Audit store ready with {target_count} registered target(s)",
                "targets": target_count,
            }

        except Exception as e:
            logger.error(f"Database validation failed: {e}")
            return {
                "status": "failed",
                "error": str(e),
                "connection_string": self._mask_connection_string(
                    self.config.database.connection_string
                ),
            }
        finally:
            await engine.dispose()

    async def validate_kafka(self) -> Dict[str, Any]:
        """
        Validate Kafka connectivity and topic accessibility.

        A missing topic is reported as a warning, since brokers may create
        it on first produce.
        """
        return await asyncio.to_thread(self._validate_kafka_sync)

    def _validate_kafka_sync(self) -> Dict[str, Any]:
        consumer_config = {
            "bootstrap.servers": ",".join(self.config.kafka.bootstrap_servers),
            "group.id": f"{self.config.kafka.group_id}_validation",
            "session.timeout.ms": 6000,
            "enable.auto.commit": False,
        }

        consumer = None
        try:
            consumer = Consumer(consumer_config)
            metadata = consumer.list_topics(timeout=10.0)

            if metadata is None:
                raise KafkaException("Failed to retrieve cluster metadata")

            topic = self.config.kafka.topic
            if topic not in metadata.topics:
                return {
                    "status": "warning",
                    "message": f"Topic does not exist yet: {topic}",
                    "available_topics": sorted(metadata.topics.keys()),
                }

            return {
                "status": "healthy",
                "message": "Kafka connectivity and topic validation successful",
                "topic": topic,
                "partitions": len(metadata.topics[topic].partitions),
            }

        except KafkaException as e:
            logger.error(f"Kafka validation failed: {e}")
            return {
                "status": "failed",
                "error": str(e),
                "bootstrap_servers": self.config.kafka.bootstrap_servers,
            }
        except Exception as e:
            logger.error(f"Unexpected error during Kafka validation: {e}")
            return {
                "status": "failed",
                "error": str(e),
                "bootstrap_servers": self.config.kafka.bootstrap_servers,
            }
        finally:
            if consumer:
                consumer.close()

    @staticmethod
    def _mask_connection_string(conn_string: str) -> str:
        """Mask credentials in a connection string for logging."""
        if "://" in conn_string and "@" in conn_string:
            protocol_end = conn_string.find("://") + 3
            at_symbol = conn_string.rfind("@")
            if protocol_end < at_symbol:
                return conn_string[:protocol_end] + "***:***" + conn_string[at_symbol:]
        return conn_string


async def validate_configuration(config: AppConfig) -> Dict[str, Any]:
    """
    Convenience function to validate configuration.

    Args:
        config: Application configuration to validate

    Returns:
        Validation results dictionary
    """
    validator = ConfigValidator(config)
    return await validator.validate_all()
