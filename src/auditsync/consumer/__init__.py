"""
Consumer package for the AuditSync consumer.

This package provides:
- Decoding of raw stream records into audit events
- The Kafka stream source with manual offset management
- The ingestion loop with commit-after-success semantics
- Graceful shutdown handling
"""

from .transformer import (
    TransformationError,
    DecodeError,
    AuditEventDecoder,
)

from .source import KafkaAuditSource

from .consumer import (
    ProcessingResult,
    IngestionMetrics,
    AuditIngestionService,
    run_ingestion_service,
)

__all__ = [
    # Decoding
    "AuditEventDecoder",
    "TransformationError",
    "DecodeError",

    # Stream source
    "KafkaAuditSource",

    # Ingestion loop
    "ProcessingResult",
    "IngestionMetrics",
    "AuditIngestionService",
    "run_ingestion_service",
]
