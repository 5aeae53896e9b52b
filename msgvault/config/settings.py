"""Application settings with Pydantic Settings validation.

Environment variables (and an optional .env file) take precedence.
Non-sensitive configuration is loaded from config/*.yaml files, which are
merged and validated against JSON schemas when one exists.
"""

import json
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError as JSONSchemaValidationError
from jsonschema import validate
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from msgvault.config.logging_config import get_logger
from msgvault.domain.archive_constants import (
    DEFAULT_ARCHIVE_BATCH_SIZE,
    DEFAULT_ARCHIVE_DEDUPE_WINDOW,
    DEFAULT_ARCHIVE_FLUSH_INTERVAL_MS,
    DEFAULT_ARCHIVE_QUEUE_MAX_SIZE,
    DEFAULT_DELETION_BATCH_SIZE,
    DEFAULT_DELETION_LOOKBACK_DAYS,
    DEFAULT_DELETION_POLL_INTERVAL_MS,
    DEFAULT_DELETION_QUEUE_MAX_SIZE,
    DEFAULT_MAX_MEDIA_SIZE,
    DEFAULT_MEDIA_MATCH_WINDOW_SECONDS,
    DEFAULT_RETENTION_DAYS,
    DEFAULT_SWEEP_INTERVAL_HOURS,
    DEFAULT_SWEEP_WARMUP_SECONDS,
)
from msgvault.services.size_parser import parse_size

logger = get_logger(__name__)

CONFIG_DIR = Path("config")


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Args:
        base: Base dictionary
        override: Dictionary to merge into base (takes precedence)

    Returns:
        Merged dictionary
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_schema(schema_name: str, config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Load JSON Schema from config/schemas/.

    Args:
        schema_name: Schema name without extension (e.g., "main")
        config_dir: Configuration directory holding ``schemas/``

    Returns:
        JSON Schema dictionary or empty dict if not found
    """
    schema_path = config_dir / "schemas" / f"{schema_name}.schema.json"
    if not schema_path.exists():
        return {}

    try:
        with open(schema_path, encoding="utf-8") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError) as e:
        logger.warning(
            "config_schema_load_failed",
            schema=schema_name,
            error=str(e),
        )
        return {}


def validate_config_section(
    config: dict[str, Any],
    schema_name: str,
    file_path: str = "",
    config_dir: Path = CONFIG_DIR,
) -> None:
    """Validate config section against JSON Schema.

    Args:
        config: Configuration dictionary to validate
        schema_name: Name of schema to validate against
        file_path: Optional file path for error messages
        config_dir: Configuration directory holding ``schemas/``

    Raises:
        ValueError: If validation fails
    """
    schema = load_schema(schema_name, config_dir)
    if not schema:
        return

    try:
        validate(instance=config, schema=schema)
        logger.debug("config_validation_succeeded", schema=schema_name)
    except JSONSchemaValidationError as e:
        error_msg = f"Config validation failed for {schema_name}"
        if file_path:
            error_msg += f" (file: {file_path})"
        error_msg += f": {e.message}"
        raise ValueError(error_msg) from e


def load_all_configs(config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Load and merge all YAML configs from the config directory.

    Loading order (later overrides earlier):
    1. main.yaml
    2. All other *.yaml files (sorted alphabetically)

    Each config is validated against its JSON Schema if available.

    Returns:
        Merged configuration dictionary
    """
    merged_config: dict[str, Any] = {}
    if not config_dir.is_dir():
        return merged_config

    main_path = config_dir / "main.yaml"
    yaml_files = sorted(f for f in config_dir.glob("*.yaml") if f.name != "main.yaml")
    if main_path.exists():
        yaml_files.insert(0, main_path)

    for yaml_file in yaml_files:
        schema_name = yaml_file.stem
        try:
            with open(yaml_file, encoding="utf-8") as f:
                file_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, OSError) as e:
            logger.warning(
                "config_file_load_failed",
                path=str(yaml_file),
                error=str(e),
            )
            continue

        try:
            validate_config_section(
                file_config, schema_name, str(yaml_file), config_dir
            )
        except ValueError as e:
            logger.error(
                "config_validation_failed",
                path=str(yaml_file),
                schema=schema_name,
                error=str(e),
            )
            raise

        merged_config = deep_merge(merged_config, file_config)
        logger.debug("config_file_loaded", path=str(yaml_file), schema=schema_name)

    logger.info("config_load_complete", file_count=len(yaml_files))
    return merged_config


class Settings(BaseSettings):
    """Application settings.

    Values passed explicitly or found in the environment win over YAML,
    which in turn wins over the defaults declared here.
    """

    model_config = SettingsConfigDict(
        env_file=".env" if Path(".env").exists() else None,
        env_file_encoding="utf-8",
        env_prefix="MSGVAULT_",
        case_sensitive=False,
        extra="ignore",
    )

    def __init__(self, config_dir: Path | None = None, **data: Any):
        """Initialize settings with auto-loaded configs from all YAML files."""
        config = load_all_configs(config_dir or CONFIG_DIR)

        super().__init__(**data)
        self._apply_yaml_defaults(config)

    def _apply_yaml_defaults(self, config: dict[str, Any]) -> None:
        """Apply YAML-sourced defaults without overriding env-provided values."""

        fields_from_env = set(self.model_fields_set)

        def _assign(field_name: str, value: Any) -> None:
            if value is None:
                return
            if field_name in fields_from_env:
                return

            object.__setattr__(self, field_name, value)
            self.model_fields_set.add(field_name)

        storage_config = config.get("storage") or {}
        _assign("data_dir", storage_config.get("data_dir"))
        _assign("tz_default", storage_config.get("timezone"))

        archive_config = config.get("archive") or {}
        _assign("archive_batch_size", archive_config.get("batch_size"))
        _assign("archive_flush_interval_ms", archive_config.get("flush_interval_ms"))
        _assign("archive_queue_max_size", archive_config.get("queue_max_size"))
        _assign("archive_dedupe_window", archive_config.get("dedupe_window"))

        media_config = config.get("media") or {}
        max_file_size = media_config.get("max_file_size")
        if max_file_size is not None:
            _assign("max_media_size", parse_size(max_file_size))
        _assign(
            "media_match_window_seconds", media_config.get("match_window_seconds")
        )
        _assign("require_media_link", media_config.get("require_message_link"))

        retention_config = config.get("retention") or {}
        _assign("retention_days", retention_config.get("days"))
        _assign("sweep_warmup_seconds", retention_config.get("warmup_seconds"))
        _assign("sweep_interval_hours", retention_config.get("interval_hours"))

        deletions_config = config.get("deletions") or {}
        _assign("deletion_lookback_days", deletions_config.get("lookback_days"))
        _assign("deletion_batch_size", deletions_config.get("batch_size"))
        _assign(
            "deletion_poll_interval_ms", deletions_config.get("poll_interval_ms")
        )
        _assign("deletion_queue_max_size", deletions_config.get("queue_max_size"))
        _assign("deletion_forward_to", deletions_config.get("forward_to"))

        logging_config = config.get("logging") or {}
        _assign("log_level", logging_config.get("level"))
        _assign("json_logs", logging_config.get("json"))

        metrics_config = config.get("metrics") or {}
        _assign("metrics_port", metrics_config.get("port"))

    # Storage
    data_dir: str = Field(default="data", description="Root of all stored data")
    tz_default: str = Field(
        default="UTC", description="Timezone used to bucket partitions by day"
    )

    # Archive queue
    archive_batch_size: int = Field(
        default=DEFAULT_ARCHIVE_BATCH_SIZE, ge=1, description="Items per flush"
    )
    archive_flush_interval_ms: int = Field(
        default=DEFAULT_ARCHIVE_FLUSH_INTERVAL_MS,
        ge=1,
        description="Delay between archive flushes in milliseconds",
    )
    archive_queue_max_size: int = Field(
        default=DEFAULT_ARCHIVE_QUEUE_MAX_SIZE,
        ge=1,
        description="Capacity of the in-memory archive queue",
    )
    archive_dedupe_window: int = Field(
        default=DEFAULT_ARCHIVE_DEDUPE_WINDOW,
        ge=0,
        description="Recently archived ids remembered for duplicate suppression",
    )

    # Media vault
    max_media_size: int = Field(
        default=parse_size(DEFAULT_MAX_MEDIA_SIZE),
        description="Largest attachment stored, bytes or '<N><B|KB|MB|GB>'",
    )
    media_match_window_seconds: float = Field(
        default=DEFAULT_MEDIA_MATCH_WINDOW_SECONDS,
        ge=0,
        description="Time window for heuristic media correlation",
    )
    require_media_link: bool = Field(
        default=False,
        description="Disable heuristic media correlation entirely",
    )

    # Retention
    retention_days: int = Field(
        default=DEFAULT_RETENTION_DAYS, ge=1, description="Retention window in days"
    )
    sweep_warmup_seconds: float = Field(
        default=DEFAULT_SWEEP_WARMUP_SECONDS,
        ge=0,
        description="Delay before the first retention sweep",
    )
    sweep_interval_hours: float = Field(
        default=DEFAULT_SWEEP_INTERVAL_HOURS,
        gt=0,
        description="Delay between retention sweeps",
    )

    # Deletions
    deletion_lookback_days: int = Field(
        default=DEFAULT_DELETION_LOOKBACK_DAYS,
        ge=1,
        description="Recent days searched before the full archive walk",
    )
    deletion_batch_size: int = Field(
        default=DEFAULT_DELETION_BATCH_SIZE, ge=1, description="Deletions per batch"
    )
    deletion_poll_interval_ms: int = Field(
        default=DEFAULT_DELETION_POLL_INTERVAL_MS,
        ge=1,
        description="Delay between deletion batches in milliseconds",
    )
    deletion_queue_max_size: int = Field(
        default=DEFAULT_DELETION_QUEUE_MAX_SIZE,
        ge=1,
        description="Capacity of the in-memory deletion queue",
    )
    deletion_forward_to: str | None = Field(
        default=None,
        description="Chat that receives every recorded deletion (None = off)",
    )

    # Observability
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Render logs as JSON")
    metrics_port: int | None = Field(
        default=None, description="Prometheus exporter port (None = env or 9000)"
    )

    @field_validator("max_media_size", mode="before")
    @classmethod
    def _parse_media_size(cls, value: Any) -> int:
        return parse_size(value)


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
