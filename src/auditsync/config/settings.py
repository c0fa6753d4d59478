"""
Centralized configuration management for the AuditSync consumer.

This module provides:
- Environment variable parsing with documented defaults
- Type-safe configuration classes per component
- Extraction policy selection
- Configuration validation

Every component reads its settings from one of these dataclasses; nothing
in the pipeline reads the environment directly.
"""

import os
from typing import List, Optional, Dict, Any
from dataclasses import dataclass, field
from enum import Enum


class Environment(str, Enum):
    """Deployment environment enumeration."""
    DEVELOPMENT = "development"
    TESTING = "testing"
    STAGING = "staging"
    PRODUCTION = "production"


class ExtractionMode(str, Enum):
    """How rule matches are turned into extracted values."""
    # One value per rule, aggregated by rule name (later names overwrite).
    FIRST_MATCH = "first_match"
    # One value per match occurrence, in match order.
    ALL_MATCHES = "all_matches"


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes", "on")


@dataclass
class KafkaConfig:
    """Kafka consumer configuration."""
    bootstrap_servers: List[str] = field(default_factory=lambda: ["localhost:9092"])
    group_id: str = "auditsync-consumer-group"
    topic: str = "oracle.audit.events"
    auto_offset_reset: str = "earliest"
    session_timeout_ms: int = 30000
    max_poll_interval_ms: int = 300000

    # Upper bound for a single poll; shutdown is checked between polls.
    poll_timeout_ms: int = 1000

    @classmethod
    def from_env(cls) -> "KafkaConfig":
        """Create Kafka config from environment variables."""
        return cls(
            bootstrap_servers=[
                s.strip() for s in os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092").split(",")
                if s.strip()
            ],
            group_id=os.getenv("KAFKA_GROUP_ID", "auditsync-consumer-group"),
            topic=os.getenv("KAFKA_TOPIC", "oracle.audit.events"),
            auto_offset_reset=os.getenv("KAFKA_AUTO_OFFSET_RESET", "earliest").lower(),
            session_timeout_ms=int(os.getenv("KAFKA_SESSION_TIMEOUT_MS", "30000")),
            max_poll_interval_ms=int(os.getenv("KAFKA_MAX_POLL_INTERVAL_MS", "300000")),
            poll_timeout_ms=int(os.getenv("KAFKA_POLL_TIMEOUT_MS", "1000")),
        )

    def to_consumer_config(self) -> Dict[str, Any]:
        """Build the confluent-kafka consumer settings.

        Auto commit is always off: offsets only advance through an explicit
        commit after a record has been fully processed.
        """
        return {
            "bootstrap.servers": ",".join(self.bootstrap_servers),
            "group.id": self.group_id,
            "auto.offset.reset": self.auto_offset_reset,
            "enable.auto.commit": False,
            "enable.auto.offset.store": False,
            "session.timeout.ms": self.session_timeout_ms,
            "max.poll.interval.ms": self.max_poll_interval_ms,
        }


@dataclass
class DatabaseConfig:
    """Audit store configuration."""
    host: str = "localhost"
    port: int = 5432
    username: str = "auditsync"
    password: str = "auditsync"
    database: str = "auditsync"

    # Full SQLAlchemy URL; takes precedence over the discrete fields.
    url: Optional[str] = None

    # Connection pool settings
    pool_size: int = 10
    max_overflow: int = 20
    pool_timeout: int = 30
    pool_recycle: int = 3600
    echo: bool = False

    @property
    def connection_string(self) -> str:
        """Generate the async SQLAlchemy connection string."""
        if self.url:
            return self.url
        return (
            f"postgresql+asyncpg://{self.username}:{self.password}"
            f"@{self.host}:{self.port}/{self.database}"
        )

    @property
    def is_sqlite(self) -> bool:
        return self.connection_string.startswith("sqlite")

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Create database config from environment variables."""
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            username=os.getenv("DB_USERNAME", "auditsync"),
            password=os.getenv("DB_PASSWORD", "auditsync"),
            database=os.getenv("DB_NAME", "auditsync"),
            url=os.getenv("DATABASE_URL") or None,
            pool_size=int(os.getenv("DB_POOL_SIZE", "10")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "20")),
            pool_timeout=int(os.getenv("DB_POOL_TIMEOUT", "30")),
            pool_recycle=int(os.getenv("DB_POOL_RECYCLE", "3600")),
            echo=_env_bool("DB_ECHO", "false"),
        )


@dataclass
class LoggingConfig:
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"

    # File logging
    log_to_file: bool = False
    log_file_path: Optional[str] = None
    max_file_size: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5

    # Structured logging (JSON)
    structured: bool = False

    @classmethod
    def from_env(cls) -> "LoggingConfig":
        """Create logging config from environment variables."""
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            format=os.getenv("LOG_FORMAT", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"),
            date_format=os.getenv("LOG_DATE_FORMAT", "%Y-%m-%d %H:%M:%S"),
            log_to_file=_env_bool("LOG_TO_FILE", "false"),
            log_file_path=os.getenv("LOG_FILE_PATH"),
            max_file_size=int(os.getenv("LOG_MAX_FILE_SIZE", str(10 * 1024 * 1024))),
            backup_count=int(os.getenv("LOG_BACKUP_COUNT", "5")),
            structured=_env_bool("LOG_STRUCTURED", "false"),
        )


@dataclass
class MonitoringConfig:
    """Metrics configuration."""
    enabled: bool = True
    metrics_port: int = 8000

    @classmethod
    def from_env(cls) -> "MonitoringConfig":
        """Create monitoring config from environment variables."""
        return cls(
            enabled=_env_bool("MONITORING_ENABLED", "true"),
            metrics_port=int(os.getenv("METRICS_PORT", "8000")),
        )


@dataclass
class IngestionConfig:
    """Settings for the consume / extract / commit loop."""
    retry_backoff_seconds: float = 5.0
    extraction_mode: ExtractionMode = ExtractionMode.ALL_MATCHES
    regex_timeout_ms: int = 100

    # Independent ingestion loops in this process, sharing the rule cache
    workers: int = 1

    @property
    def regex_timeout_seconds(self) -> float:
        return self.regex_timeout_ms / 1000.0

    @classmethod
    def from_env(cls) -> "IngestionConfig":
        """Create ingestion config from environment variables."""
        return cls(
            retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "5.0")),
            extraction_mode=ExtractionMode(os.getenv("EXTRACTION_MODE", "all_matches").lower()),
            regex_timeout_ms=int(os.getenv("REGEX_TIMEOUT_MS", "100")),
            workers=int(os.getenv("INGESTION_WORKERS", "1")),
        )


@dataclass
class AppConfig:
    """Main application configuration."""
    environment: Environment = Environment.DEVELOPMENT
    debug: bool = False

    # Component configs
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = field(default_factory=MonitoringConfig)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)

    # Application settings
    app_name: str = "auditsync-consumer"
    version: str = "1.0.0"

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Create application config from environment variables."""
        env_str = os.getenv("ENVIRONMENT", "development").lower()
        try:
            environment = Environment(env_str)
        except ValueError:
            environment = Environment.DEVELOPMENT

        return cls(
            environment=environment,
            debug=_env_bool("DEBUG", "false"),
            kafka=KafkaConfig.from_env(),
            database=DatabaseConfig.from_env(),
            logging=LoggingConfig.from_env(),
            monitoring=MonitoringConfig.from_env(),
            ingestion=IngestionConfig.from_env(),
            app_name=os.getenv("APP_NAME", "auditsync-consumer"),
            version=os.getenv("APP_VERSION", "1.0.0"),
        )

    def validate(self) -> None:
        """Validate configuration values."""
        if not self.kafka.bootstrap_servers:
            raise ValueError("At least one Kafka bootstrap server must be configured")

        if not self.kafka.topic:
            raise ValueError("A Kafka topic must be configured")

        if self.kafka.poll_timeout_ms <= 0:
            raise ValueError("Kafka poll timeout must be positive")

        if not self.database.url and (not self.database.username or not self.database.password):
            raise ValueError("Database credentials must be provided")

        if self.ingestion.retry_backoff_seconds < 0:
            raise ValueError("Retry backoff cannot be negative")

        if self.ingestion.regex_timeout_ms <= 0:
            raise ValueError("Regex timeout must be positive")

        if self.ingestion.workers < 1:
            raise ValueError("At least one ingestion worker is required")

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary for logging (no secrets)."""
        return {
            "environment": self.environment.value,
            "debug": self.debug,
            "app_name": self.app_name,
            "version": self.version,
            "kafka": {
                "bootstrap_servers": self.kafka.bootstrap_servers,
                "group_id": self.kafka.group_id,
                "topic": self.kafka.topic,
            },
            "database": {
                "host": self.database.host,
                "port": self.database.port,
                "database": self.database.database,
                "url_configured": bool(self.database.url),
            },
            "ingestion": {
                "retry_backoff_seconds": self.ingestion.retry_backoff_seconds,
                "extraction_mode": self.ingestion.extraction_mode.value,
                "regex_timeout_ms": self.ingestion.regex_timeout_ms,
                "workers": self.ingestion.workers,
            },
        }
