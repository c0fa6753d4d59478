"""
Cases package for the AuditSync consumer.

This package provides:
- TargetGate, the target eligibility check
- CaseDeduplicator, at-most-once case creation per audit log
"""

from .gate import TargetGate
from .deduplicator import CaseDeduplicator

__all__ = [
    "TargetGate",
    "CaseDeduplicator",
]
