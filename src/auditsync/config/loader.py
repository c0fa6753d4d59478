"""
Configuration loader utilities.

Provides functions to load configuration from various sources:
- Configuration files (YAML/JSON)
- Environment variables (take precedence over files)
- Dataclass defaults (fallback)
"""

import os
import json
import logging
import yaml
from dataclasses import fields
from pathlib import Path
from typing import Dict, Any, Optional

from .settings import (
    AppConfig,
    DatabaseConfig,
    Environment,
    ExtractionMode,
    IngestionConfig,
    KafkaConfig,
    LoggingConfig,
    MonitoringConfig,
)

logger = logging.getLogger(__name__)

_SECTIONS = {
    "kafka": KafkaConfig,
    "database": DatabaseConfig,
    "logging": LoggingConfig,
    "monitoring": MonitoringConfig,
    "ingestion": IngestionConfig,
}

_INT_KEYS = {
    "port", "pool_size", "max_overflow", "pool_timeout", "pool_recycle",
    "max_file_size", "backup_count", "metrics_port", "session_timeout_ms",
    "max_poll_interval_ms", "poll_timeout_ms", "regex_timeout_ms", "workers",
}
_BOOL_KEYS = {"debug", "log_to_file", "structured", "enabled", "echo"}
_FLOAT_KEYS = {"retry_backoff_seconds"}


class ConfigLoader:
    """Configuration loader with support for multiple sources."""

    # Environment variable -> dotted config path
    ENV_MAPPINGS = {
        'ENVIRONMENT': 'environment',
        'DEBUG': 'debug',
        'APP_NAME': 'app_name',
        'APP_VERSION': 'version',
        # Kafka settings
        'KAFKA_BOOTSTRAP_SERVERS': 'kafka.bootstrap_servers',
        'KAFKA_GROUP_ID': 'kafka.group_id',
        'KAFKA_TOPIC': 'kafka.topic',
        'KAFKA_AUTO_OFFSET_RESET': 'kafka.auto_offset_reset',
        'KAFKA_SESSION_TIMEOUT_MS': 'kafka.session_timeout_ms',
        'KAFKA_MAX_POLL_INTERVAL_MS': 'kafka.max_poll_interval_ms',
        'KAFKA_POLL_TIMEOUT_MS': 'kafka.poll_timeout_ms',
        # Database settings
        'DATABASE_URL': 'database.url',
        'DB_HOST': 'database.host',
        'DB_PORT': 'database.port',
        'DB_USERNAME': 'database.username',
        'DB_PASSWORD': 'database.password',
        'DB_NAME': 'database.database',
        'DB_POOL_SIZE': 'database.pool_size',
        'DB_MAX_OVERFLOW': 'database.max_overflow',
        'DB_POOL_TIMEOUT': 'database.pool_timeout',
        'DB_POOL_RECYCLE': 'database.pool_recycle',
        'DB_ECHO': 'database.echo',
        # Logging settings
        'LOG_LEVEL': 'logging.level',
        'LOG_FORMAT': 'logging.format',
        'LOG_DATE_FORMAT': 'logging.date_format',
        'LOG_TO_FILE': 'logging.log_to_file',
        'LOG_FILE_PATH': 'logging.log_file_path',
        'LOG_MAX_FILE_SIZE': 'logging.max_file_size',
        'LOG_BACKUP_COUNT': 'logging.backup_count',
        'LOG_STRUCTURED': 'logging.structured',
        # Monitoring settings
        'MONITORING_ENABLED': 'monitoring.enabled',
        'METRICS_PORT': 'monitoring.metrics_port',
        # Ingestion settings
        'RETRY_BACKOFF_SECONDS': 'ingestion.retry_backoff_seconds',
        'EXTRACTION_MODE': 'ingestion.extraction_mode',
        'REGEX_TIMEOUT_MS': 'ingestion.regex_timeout_ms',
        'INGESTION_WORKERS': 'ingestion.workers',
    }

    def __init__(self):
        self.config_paths = [
            Path.cwd() / "config" / "app.yaml",
            Path.cwd() / "config" / "app.json",
            Path.home() / ".auditsync" / "config.yaml",
            Path.home() / ".auditsync" / "config.json",
        ]

    def load_from_file(self, config_path: Optional[Path] = None) -> Dict[str, Any]:
        """
        Load configuration from file.

        Args:
            config_path: Specific config file path, or None to try defaults

        Returns:
            Configuration dictionary from file, or empty dict if not found
        """
        paths_to_try = [config_path] if config_path else self.config_paths

        for path in paths_to_try:
            if not path.exists():
                continue
            try:
                with open(path, 'r', encoding='utf-8') as f:
                    if path.suffix.lower() in ['.yaml', '.yml']:
                        return yaml.safe_load(f) or {}
                    elif path.suffix.lower() == '.json':
                        return json.load(f) or {}
            except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
                logger.warning(f"Failed to load config from {path}: {e}")
                continue

        return {}

    def merge_configs(self, file_config: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge file configuration with environment variables.

        Environment variables take precedence over file config.
        """
        merged = {
            key: dict(value) if isinstance(value, dict) else value
            for key, value in file_config.items()
        }

        for env_var, config_path in self.ENV_MAPPINGS.items():
            env_value = os.getenv(env_var)
            if env_value is not None:
                self._set_nested_value(merged, config_path, env_value)

        return merged

    def _set_nested_value(self, config: Dict[str, Any], path: str, value: Any) -> None:
        """Set a value in a nested dictionary using dot notation."""
        keys = path.split('.')
        current = config

        for key in keys[:-1]:
            if not isinstance(current.get(key), dict):
                current[key] = {}
            current = current[key]

        current[keys[-1]] = self._convert(keys[-1], value)

    @staticmethod
    def _convert(key: str, value: Any) -> Any:
        """Coerce a raw (string) value to the type of the named field."""
        if key in _INT_KEYS:
            return int(value)
        if key in _BOOL_KEYS:
            if isinstance(value, bool):
                return value
            return str(value).lower() in ('true', '1', 'yes', 'on')
        if key in _FLOAT_KEYS:
            return float(value)
        if key == 'bootstrap_servers' and isinstance(value, str):
            return [s.strip() for s in value.split(',') if s.strip()]
        return value

    def build_config(self, values: Dict[str, Any]) -> AppConfig:
        """Map a merged nested dictionary onto AppConfig."""
        sections = {}
        for name, section_cls in _SECTIONS.items():
            raw = values.get(name) or {}
            known = {f.name for f in fields(section_cls)}
            kwargs = {
                key: self._convert(key, value)
                for key, value in raw.items()
                if key in known
            }
            unknown = set(raw) - known
            if unknown:
                logger.warning(f"Ignoring unknown {name} settings: {sorted(unknown)}")
            sections[name] = section_cls(**kwargs)

        ingestion = sections["ingestion"]
        if not isinstance(ingestion.extraction_mode, ExtractionMode):
            ingestion.extraction_mode = ExtractionMode(str(ingestion.extraction_mode).lower())

        try:
            environment = Environment(str(values.get("environment", "development")).lower())
        except ValueError:
            environment = Environment.DEVELOPMENT

        return AppConfig(
            environment=environment,
            debug=self._convert("debug", values.get("debug", False)),
            app_name=values.get("app_name", "auditsync-consumer"),
            version=str(values.get("version", "1.0.0")),
            **sections,
        )

    def load_config(self, config_path: Optional[Path] = None) -> AppConfig:
        """
        Load and create AppConfig from available sources.

        Args:
            config_path: Optional specific config file path

        Returns:
            Validated AppConfig instance
        """
        file_config = self.load_from_file(config_path)
        merged_config = self.merge_configs(file_config)
        config = self.build_config(merged_config)
        config.validate()
        return config


def load_configuration(config_path: Optional[Path] = None) -> AppConfig:
    """
    Convenience function to load application configuration.

    Args:
        config_path: Optional path to configuration file

    Returns:
        Configured AppConfig instance
    """
    loader = ConfigLoader()
    return loader.load_config(config_path)


# Example configuration file template
DEFAULT_CONFIG_YAML = """
environment: development
debug: false

kafka:
  bootstrap_servers:
    - localhost:9092
  group_id: auditsync-consumer-group
  topic: oracle.audit.events
  auto_offset_reset: earliest

database:
  host: localhost
  port: 5432
  username: auditsync
  password: auditsync
  database: auditsync
  pool_size: 10
  max_overflow: 20

logging:
  level: INFO
  structured: false

monitoring:
  enabled: true
  metrics_port: 8000

ingestion:
  retry_backoff_seconds: 5.0
  extraction_mode: all_matches
  regex_timeout_ms: 100
  workers: 1
"""
