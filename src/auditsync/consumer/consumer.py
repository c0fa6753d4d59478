"""
Audit ingestion service.

This module provides:
- The per-record pipeline: decode, gate, persist, load rules, extract,
  create case
- The consume / process / commit loop with at-least-once delivery
- Retry with a fixed, shutdown-interruptible backoff
- Graceful shutdown handling

A record's offset is committed only after every step for that record
has succeeded. On failure the offset is withheld, the partition is
rewound to the record and the same record is fetched again after the
backoff.
"""

import asyncio
import signal
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field

from ..config import IngestionConfig
from ..core.logging import bind_event_id, current_event_id, record_context
from ..monitoring import MetricsCollector, time_stage
from .transformer import AuditEventDecoder, DecodeError

logger = logging.getLogger(__name__)


class ProcessingResult(str, Enum):
    """Outcome of processing one record."""
    STORED_NO_RULES = "stored_no_rules"
    STORED_NO_EXTRACTIONS = "stored_no_extractions"
    CASE_CREATED = "case_created"
    CASE_EXISTS = "case_exists"
    SKIPPED_NO_TARGET = "skipped_no_target"
    SKIPPED_UNKNOWN_TARGET = "skipped_unknown_target"
    SKIPPED_MALFORMED = "skipped_malformed"
    RETRY_REQUIRED_RULE = "retry_required_rule"

    @property
    def committable(self) -> bool:
        return self is not ProcessingResult.RETRY_REQUIRED_RULE


@dataclass
class IngestionMetrics:
    """In-process counters for one ingestion loop."""
    records_consumed: int = 0
    records_committed: int = 0
    records_skipped: int = 0
    records_retried: int = 0
    cases_created: int = 0
    values_extracted: int = 0
    last_record_timestamp: Optional[datetime] = None
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert metrics to dictionary."""
        return {
            "records_consumed": self.records_consumed,
            "records_committed": self.records_committed,
            "records_skipped": self.records_skipped,
            "records_retried": self.records_retried,
            "cases_created": self.cases_created,
            "values_extracted": self.values_extracted,
            "last_record_timestamp": (
                self.last_record_timestamp.isoformat() if self.last_record_timestamp else None
            ),
            "uptime_seconds": (datetime.now(timezone.utc) - self.start_time).total_seconds(),
        }


class AuditIngestionService:
    """
    Consumes audit records and drives them through the pipeline.

    One instance runs one loop. Several instances may share the rule
    cache, the engine and the repositories.
    """

    def __init__(
        self,
        source,
        decoder: Optional[AuditEventDecoder],
        gate,
        audit_repository,
        rule_cache,
        engine,
        deduplicator,
        config: IngestionConfig,
        metrics: Optional[MetricsCollector] = None,
    ):
        self.source = source
        self.decoder = decoder or AuditEventDecoder()
        self.gate = gate
        self.audit_repository = audit_repository
        self.rule_cache = rule_cache
        self.engine = engine
        self.deduplicator = deduplicator
        self.config = config
        self.metrics = metrics

        self.stats = IngestionMetrics()
        self.shutdown_event = asyncio.Event()
        self.running = False

    async def process_record(self, record) -> ProcessingResult:
        """
        Run one record through the pipeline, without committing.

        Args:
            record: Stream record exposing ``value()``, ``topic()``,
                ``partition()`` and ``offset()``

        Returns:
            The processing result; every result except
            RETRY_REQUIRED_RULE may be committed

        Raises:
            RepositoryError: If a store call fails (retryable)
        """
        try:
            event = self.decoder.decode(record)
        except DecodeError:
            return ProcessingResult.SKIPPED_MALFORMED

        bind_event_id(event.id)

        if not event.target or not event.target.strip():
            logger.debug(f"Event {event.id} has no target, skipping (not storing)")
            return ProcessingResult.SKIPPED_NO_TARGET

        async with time_stage("gate", self.metrics):
            eligible = await self.gate.is_eligible(event.target)
        if not eligible:
            logger.debug(
                f"Event {event.id} has target '{event.target}' that is not registered, "
                f"skipping (not storing)"
            )
            return ProcessingResult.SKIPPED_UNKNOWN_TARGET

        async with time_stage("persist", self.metrics):
            await self.audit_repository.upsert(event, record.partition(), record.offset())

        async with time_stage("rules", self.metrics):
            rules = await self.rule_cache.rules_for(event.target)
        if not rules:
            logger.debug(
                f"No extraction rules for target '{event.target}', audit log {event.id} stored"
            )
            return ProcessingResult.STORED_NO_RULES

        async with time_stage("extract", self.metrics):
            outcome = self.engine.apply(event, rules)
        if outcome.failed:
            return ProcessingResult.RETRY_REQUIRED_RULE

        if not outcome.values:
            logger.debug(f"No values extracted from event {event.id}, no case created")
            return ProcessingResult.STORED_NO_EXTRACTIONS

        self.stats.values_extracted += len(outcome.values)
        if self.metrics:
            self.metrics.record_extracted(event.target, len(outcome.values))

        async with time_stage("case", self.metrics):
            case_id = await self.deduplicator.ensure_case(event, outcome.values)

        if case_id is None:
            logger.info(f"Processed event {event.id}: case already exists (reprocessing)")
            return ProcessingResult.CASE_EXISTS

        self.stats.cases_created += 1
        if self.metrics:
            self.metrics.record_case_created(event.target)
        logger.info(
            f"Processed event {event.id}: created case {case_id} "
            f"with {len(outcome.values)} extraction(s)"
        )
        return ProcessingResult.CASE_CREATED

    async def run(self) -> None:
        """
        Consume records until stop() is called.

        A single record's failure never ends the loop: the record is left
        uncommitted, the source is rewound to it and the loop waits for
        the retry backoff before fetching again.
        """
        logger.info("Audit ingestion loop starting...")
        self.running = True

        try:
            self.source.subscribe()

            while not self.shutdown_event.is_set():
                try:
                    record = await self.source.fetch(self.shutdown_event)
                except Exception as e:
                    logger.error(f"Failed to fetch from stream: {e}")
                    await self._backoff()
                    continue

                if record is None:
                    break

                self.stats.records_consumed += 1
                self.stats.last_record_timestamp = datetime.now(timezone.utc)
                if self.metrics:
                    self.metrics.record_consumed(record.topic(), record.partition())

                with record_context(
                    topic=record.topic(),
                    partition=record.partition(),
                    offset=record.offset(),
                ):
                    await self._handle(record)
        except Exception as e:
            logger.error(f"Audit ingestion loop failed: {e}", exc_info=True)
            raise
        finally:
            self.running = False
            self.source.close()
            logger.info("Audit ingestion loop stopped")

    async def _handle(self, record) -> None:
        """Process one record and decide between commit and retry."""
        position = f"{record.topic()}:{record.partition()}:{record.offset()}"

        try:
            result = await self.process_record(record)
        except Exception as e:
            logger.error(
                f"Error processing event {current_event_id()} at {position}, "
                f"will retry: {e}",
                exc_info=True,
            )
            await self._retry(record, type(e).__name__)
            return

        if not result.committable:
            logger.warning(
                f"Required rule failed for event {current_event_id()} at {position}, "
                f"withholding commit"
            )
            await self._retry(record, result.value)
            return

        try:
            self.source.commit(record)
        except Exception as e:
            logger.error(
                f"Failed to commit event {current_event_id()} at {position}, will retry: {e}"
            )
            await self._retry(record, "commit_failed")
            return

        self.stats.records_committed += 1
        if result.value.startswith("skipped"):
            self.stats.records_skipped += 1
        if self.metrics:
            self.metrics.record_committed(result.value)

    async def _retry(self, record, reason: str) -> None:
        self.stats.records_retried += 1
        if self.metrics:
            self.metrics.record_retry(reason)
        self.source.rewind(record)
        await self._backoff()

    async def _backoff(self) -> None:
        """Wait the retry backoff, returning early on shutdown."""
        try:
            await asyncio.wait_for(
                self.shutdown_event.wait(),
                timeout=self.config.retry_backoff_seconds,
            )
        except asyncio.TimeoutError:
            pass

    def stop(self) -> None:
        """Request shutdown; the record in flight is finished first."""
        if not self.shutdown_event.is_set():
            logger.info("Stopping audit ingestion loop...")
            self.shutdown_event.set()

    def get_metrics(self) -> Dict[str, Any]:
        """Get current loop metrics."""
        return self.stats.to_dict()


async def run_ingestion_service(services: List[AuditIngestionService]) -> None:
    """
    Run ingestion loops, one task each, with proper signal handling.

    SIGINT and SIGTERM request a graceful shutdown of every loop. If one
    loop fails, the others are stopped and the first failure is re-raised.
    """
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _on_signal, services, sig)

    tasks = [asyncio.create_task(service.run()) for service in services]

    try:
        _, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
        if pending:
            logger.error(
                f"An ingestion loop failed, stopping the remaining {len(pending)}"
            )
            for service in services:
                service.stop()
            await asyncio.wait(pending)
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        for task in tasks:
            if not task.done():
                task.cancel()

    failures = [task.exception() for task in tasks
                if not task.cancelled() and task.exception() is not None]
    if failures:
        raise failures[0]


def _on_signal(services: List[AuditIngestionService], sig: signal.Signals) -> None:
    logger.info(f"Received signal {sig.name}, initiating shutdown...")
    for service in services:
        service.stop()
