"""
Monitoring service for the AuditSync consumer.

This module provides:
- Prometheus metrics for the ingestion pipeline
- An optional metrics HTTP endpoint
"""

import logging
import time
from typing import Optional

from prometheus_client import (
    Counter, Gauge, Histogram, CollectorRegistry,
    generate_latest, start_http_server,
)

from ..config import MonitoringConfig

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Prometheus metrics collector."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        # Record flow metrics
        self.records_consumed = Counter(
            'auditsync_records_consumed_total',
            'Total number of records fetched from the stream',
            ['topic', 'partition'],
            registry=self.registry
        )

        self.records_committed = Counter(
            'auditsync_records_committed_total',
            'Total number of records committed, by processing result',
            ['result'],
            registry=self.registry
        )

        self.record_retries = Counter(
            'auditsync_record_retries_total',
            'Total number of records left uncommitted for redelivery',
            ['reason'],
            registry=self.registry
        )

        # Extraction metrics
        self.values_extracted = Counter(
            'auditsync_values_extracted_total',
            'Total number of values extracted by rules',
            ['target'],
            registry=self.registry
        )

        self.cases_created = Counter(
            'auditsync_cases_created_total',
            'Total number of review cases created',
            ['target'],
            registry=self.registry
        )

        self.rule_cache_loads = Counter(
            'auditsync_rule_cache_loads_total',
            'Total number of rule loads from the store',
            ['target'],
            registry=self.registry
        )

        self.rules_loaded = Gauge(
            'auditsync_rule_cache_rules',
            'Number of active rules cached for each target',
            ['target'],
            registry=self.registry
        )

        self.stage_duration = Histogram(
            'auditsync_stage_duration_seconds',
            'Time spent in each pipeline stage',
            ['stage'],
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
            registry=self.registry
        )

        # Application metrics
        self.app_uptime = Gauge(
            'auditsync_app_uptime_seconds',
            'Application uptime in seconds',
            registry=self.registry
        )
        self.app_start_time = time.time()
        self.app_uptime.set_function(lambda: time.time() - self.app_start_time)

    def record_consumed(self, topic: str, partition: int) -> None:
        self.records_consumed.labels(topic=topic, partition=str(partition)).inc()

    def record_committed(self, result: str) -> None:
        self.records_committed.labels(result=result).inc()

    def record_retry(self, reason: str) -> None:
        self.record_retries.labels(reason=reason).inc()

    def record_extracted(self, target: str, count: int) -> None:
        if count:
            self.values_extracted.labels(target=target).inc(count)

    def record_case_created(self, target: str) -> None:
        self.cases_created.labels(target=target).inc()

    def record_rule_load(self, target: str, rule_count: int) -> None:
        """Record a rule cache miss that reached the store."""
        self.rule_cache_loads.labels(target=target).inc()
        self.rules_loaded.labels(target=target).set(rule_count)

    def record_stage_duration(self, stage: str, duration_seconds: float) -> None:
        self.stage_duration.labels(stage=stage).observe(duration_seconds)

    def get_metrics_text(self) -> str:
        """Get metrics in Prometheus text format."""
        return generate_latest(self.registry).decode('utf-8')


class MonitoringService:
    """Exposes the metrics registry over HTTP when enabled."""

    def __init__(
        self,
        config: MonitoringConfig,
        metrics_collector: Optional[MetricsCollector] = None
    ):
        self.config = config
        self.metrics = metrics_collector or MetricsCollector()
        self._server = None
        self._thread = None

    def start(self) -> None:
        """Start the metrics endpoint."""
        if not self.config.enabled:
            logger.info("Monitoring disabled in configuration")
            return

        self._server, self._thread = start_http_server(
            self.config.metrics_port,
            registry=self.metrics.registry,
        )
        logger.info(f"Metrics server started on port {self.config.metrics_port}")

    def stop(self) -> None:
        """Stop the metrics endpoint."""
        if self._server is None:
            return

        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)

        self._server = None
        self._thread = None
        logger.info("Metrics server stopped")
