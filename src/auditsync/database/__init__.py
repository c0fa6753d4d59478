"""
Database package for the AuditSync consumer.

This package provides:
- SQLAlchemy models for targets, rules, audit logs, cases and extractions
- Async engine/session management
- Repositories with connection-per-call semantics
"""

from .models import (
    Base,
    Target,
    TargetRule,
    AuditLog,
    Case,
    CaseExtraction,
    CaseStatus,
    CaseValidity,
)

from .manager import DatabaseManager

from .repositories import (
    RepositoryError,
    DuplicateKeyError,
    TargetRepository,
    RuleRepository,
    AuditLogRepository,
    CaseRepository,
    CaseExtractionRepository,
)

__all__ = [
    # Models
    "Base",
    "Target",
    "TargetRule",
    "AuditLog",
    "Case",
    "CaseExtraction",
    "CaseStatus",
    "CaseValidity",

    # Connection management
    "DatabaseManager",

    # Repositories
    "TargetRepository",
    "RuleRepository",
    "AuditLogRepository",
    "CaseRepository",
    "CaseExtractionRepository",

    # Exceptions
    "RepositoryError",
    "DuplicateKeyError",
]
