"""
Test configuration and fixtures for the AuditSync consumer tests.

This module provides:
- In-memory SQLite audit store setup and teardown
- Repository and ingestion settings fixtures
- Custom pytest markers
"""

import pytest

from auditsync.config import DatabaseConfig, IngestionConfig, ExtractionMode
from auditsync.database import (
    DatabaseManager,
    TargetRepository,
    RuleRepository,
    AuditLogRepository,
    CaseRepository,
    CaseExtractionRepository,
)


@pytest.fixture
async def db_manager():
    """Database manager over a fresh in-memory SQLite store."""
    manager = DatabaseManager(DatabaseConfig(url="sqlite+aiosqlite:///:memory:"))
    await manager.create_schema()

    yield manager

    await manager.close()


@pytest.fixture
def repositories(db_manager):
    """All repositories bound to the test store."""
    return {
        "targets": TargetRepository(db_manager),
        "rules": RuleRepository(db_manager),
        "audit_logs": AuditLogRepository(db_manager),
        "cases": CaseRepository(db_manager),
        "extractions": CaseExtractionRepository(db_manager),
    }


@pytest.fixture
def ingestion_config() -> IngestionConfig:
    """Ingestion settings with no retry delay."""
    return IngestionConfig(
        retry_backoff_seconds=0.0,
        extraction_mode=ExtractionMode.ALL_MATCHES,
        regex_timeout_ms=100,
    )


# Pytest configuration
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
