"""
Extraction package for the AuditSync consumer.

This package provides:
- RuleCache, the per-target rule cache with single-flight loading
- ExtractionEngine, the regex rule engine and its typed outcome
"""

from .cache import RuleCache

from .engine import (
    ExtractionEngine,
    ExtractionOutcome,
    RequiredRuleFailed,
)

__all__ = [
    "RuleCache",
    "ExtractionEngine",
    "ExtractionOutcome",
    "RequiredRuleFailed",
]
