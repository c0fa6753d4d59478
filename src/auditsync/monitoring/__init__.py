"""
Monitoring package for the AuditSync consumer.

This package provides:
- Prometheus metrics collection and exposure
- Pipeline stage timing
"""

from .service import (
    MetricsCollector,
    MonitoringService,
)

from .middleware import time_stage

__all__ = [
    # Service classes
    "MetricsCollector",
    "MonitoringService",

    # Stage timing
    "time_stage",
]
