"""
Main entry point for the AuditSync consumer.

This module provides:
- Application initialization and configuration
- Wiring of the store, rule cache, engine and ingestion loops
- Metrics endpoint startup
- Graceful shutdown handling
"""

import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .config import AppConfig, load_configuration, validate_configuration
from .core.logging import setup_logging
from .database import (
    DatabaseManager,
    TargetRepository,
    RuleRepository,
    AuditLogRepository,
    CaseRepository,
    CaseExtractionRepository,
)
from .extraction import RuleCache, ExtractionEngine
from .cases import TargetGate, CaseDeduplicator
from .consumer import (
    AuditEventDecoder,
    AuditIngestionService,
    KafkaAuditSource,
    run_ingestion_service,
)
from .monitoring import MetricsCollector, MonitoringService

logger = logging.getLogger(__name__)


class AuditSyncApplication:
    """
    Main AuditSync application.

    Orchestrates all services and manages application lifecycle.
    """

    def __init__(self, config: AppConfig):
        self.config = config
        self.database_manager: Optional[DatabaseManager] = None
        self.monitoring_service: Optional[MonitoringService] = None
        self.metrics: Optional[MetricsCollector] = None
        self.services: List[AuditIngestionService] = []

    async def initialize(self) -> None:
        """Validate configuration and build every component."""
        logger.info("Initializing AuditSync Application...")

        logger.info("Validating configuration...")
        validation_result = await validate_configuration(self.config)
        if validation_result.get("overall_status") != "healthy":
            raise RuntimeError(f"Configuration validation failed: {validation_result}")
        logger.info("Configuration validation successful")

        self.metrics = MetricsCollector()
        if self.config.monitoring.enabled:
            self.monitoring_service = MonitoringService(self.config.monitoring, self.metrics)
            self.monitoring_service.start()

        self.database_manager = DatabaseManager(self.config.database)

        # Shared by every ingestion loop
        rule_cache = RuleCache(RuleRepository(self.database_manager), metrics=self.metrics)
        engine = ExtractionEngine(
            mode=self.config.ingestion.extraction_mode,
            timeout_seconds=self.config.ingestion.regex_timeout_seconds,
        )
        gate = TargetGate(TargetRepository(self.database_manager))
        audit_repository = AuditLogRepository(self.database_manager)
        deduplicator = CaseDeduplicator(
            CaseRepository(self.database_manager),
            CaseExtractionRepository(self.database_manager),
        )
        decoder = AuditEventDecoder()

        for _ in range(self.config.ingestion.workers):
            self.services.append(AuditIngestionService(
                source=KafkaAuditSource(self.config.kafka),
                decoder=decoder,
                gate=gate,
                audit_repository=audit_repository,
                rule_cache=rule_cache,
                engine=engine,
                deduplicator=deduplicator,
                config=self.config.ingestion,
                metrics=self.metrics,
            ))

        logger.info(
            f"AuditSync Application initialized with {len(self.services)} ingestion loop(s), "
            f"extraction mode {self.config.ingestion.extraction_mode.value}"
        )

    async def run(self) -> None:
        """Run the complete application."""
        try:
            await self.initialize()
            await run_ingestion_service(self.services)
        finally:
            await self.cleanup()

    async def cleanup(self) -> None:
        """Clean up all resources."""
        logger.info("Cleaning up application resources...")

        if self.monitoring_service:
            self.monitoring_service.stop()

        if self.database_manager:
            await self.database_manager.close()

        logger.info("Application cleanup completed")


async def main(config_path: Optional[Path] = None) -> None:
    """Main application entry point."""
    config = load_configuration(config_path)
    setup_logging(config.logging, config.environment)

    logger.info(f"Starting AuditSync Consumer v{config.version}")
    logger.info(f"Environment: {config.environment.value}")
    logger.debug(f"Configuration: {config.to_dict()}")

    app = AuditSyncApplication(config)
    await app.run()


def run() -> None:
    """Console script entry point."""
    config_file = os.getenv("AUDITSYNC_CONFIG_FILE")
    try:
        asyncio.run(main(Path(config_file) if config_file else None))
    except Exception as e:
        logging.getLogger(__name__).error(f"Application failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
