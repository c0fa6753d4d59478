"""
Configuration package for the AuditSync consumer.

This package provides centralized configuration management with:
- Environment variable support
- Configuration file loading (YAML/JSON)
- Type-safe configuration classes
- Startup validation of the store and the broker
"""

from .settings import (
    AppConfig,
    KafkaConfig,
    DatabaseConfig,
    LoggingConfig,
    MonitoringConfig,
    IngestionConfig,
    Environment,
    ExtractionMode,
)

from .validator import (
    ConfigValidator,
    validate_configuration,
    REQUIRED_TABLES,
)

from .loader import (
    ConfigLoader,
    load_configuration,
    DEFAULT_CONFIG_YAML,
)

__all__ = [
    # Main configuration classes
    "AppConfig",
    "KafkaConfig",
    "DatabaseConfig",
    "LoggingConfig",
    "MonitoringConfig",
    "IngestionConfig",
    "Environment",
    "ExtractionMode",

    # Validation utilities
    "ConfigValidator",
    "validate_configuration",
    "REQUIRED_TABLES",

    # Loading utilities
    "ConfigLoader",
    "load_configuration",
    "DEFAULT_CONFIG_YAML",
]
