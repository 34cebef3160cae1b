"""
Configuration module for supertag-index.

Supports loading from YAML/JSON files with environment variable overrides.
Default values are loaded from defaults.yaml for maintainability.
"""

import json
import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

logger = logging.getLogger(__name__)

# Path to the default configuration file
_DEFAULTS_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

# Cache for default values
_defaults_cache: dict[str, Any] | None = None


def _load_defaults() -> dict[str, Any]:
    """Load default configuration values from defaults.yaml."""
    global _defaults_cache

    if _defaults_cache is not None:
        return _defaults_cache

    if not _DEFAULTS_CONFIG_PATH.exists():
        logger.warning(f"Defaults config not found: {_DEFAULTS_CONFIG_PATH}")
        _defaults_cache = {}
        return _defaults_cache

    try:
        content = _DEFAULTS_CONFIG_PATH.read_text(encoding="utf-8")
        _defaults_cache = yaml.safe_load(content) or {}
    except yaml.YAMLError as e:
        logger.error(f"Failed to parse defaults config: {e}")
        _defaults_cache = {}

    return _defaults_cache


def _get_default(section: str, key: str, fallback: Any = None) -> Any:
    """Get a default value from the defaults config."""
    defaults = _load_defaults()
    section_defaults = defaults.get(section, {})
    return section_defaults.get(key, fallback)


@dataclass
class DatabaseConfig:
    """Configuration for the SQLite index database."""

    path: str = field(default_factory=lambda: _get_default("database", "path", ".supertag/index.db"))
    busy_timeout_ms: int = field(
        default_factory=lambda: _get_default("database", "busy_timeout_ms", 5000)
    )
    journal_mode: str = field(
        default_factory=lambda: _get_default("database", "journal_mode", "WAL")
    )


@dataclass
class RetryConfig:
    """
    Backoff settings for operations that hit a locked database.

    Attributes:
        max_retries: Total number of attempts before giving up.
        base_delay: Delay in seconds before the first retry.
        max_delay: Upper bound in seconds for any single delay.
        jitter: Maximum random seconds added to each delay.
    """

    max_retries: int = field(default_factory=lambda: _get_default("retry", "max_retries", 5))
    base_delay: float = field(default_factory=lambda: _get_default("retry", "base_delay", 0.1))
    max_delay: float = field(default_factory=lambda: _get_default("retry", "max_delay", 2.0))
    jitter: float = field(default_factory=lambda: _get_default("retry", "jitter", 0.1))


@dataclass
class IndexingConfig:
    """Configuration for graph extraction during a sync."""

    max_tuple_children: int = field(
        default_factory=lambda: _get_default("indexing", "max_tuple_children", 50)
    )
    ancestor_max_depth: int = field(
        default_factory=lambda: _get_default("indexing", "ancestor_max_depth", 10)
    )
    trash_max_depth: int = field(
        default_factory=lambda: _get_default("indexing", "trash_max_depth", 20)
    )
    include_nested_values: bool = field(
        default_factory=lambda: _get_default("indexing", "include_nested_values", False)
    )
    nested_value_depth: int = field(
        default_factory=lambda: _get_default("indexing", "nested_value_depth", 2)
    )


@dataclass
class LoggingConfig:
    """Configuration for logging."""

    level: str = field(default_factory=lambda: _get_default("logging", "level", "INFO"))
    format: str = field(
        default_factory=lambda: _get_default(
            "logging", "format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
    )


@dataclass
class SyncConfig:
    """Main configuration class for supertag-index."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    indexing: IndexingConfig = field(default_factory=IndexingConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_file(cls, path: Path | str) -> "SyncConfig":
        """
        Load configuration from a YAML or JSON file.

        Args:
            path: Path to the configuration file (.yaml, .yml, or .json)

        Returns:
            SyncConfig instance with loaded values

        Raises:
            FileNotFoundError: If the config file doesn't exist
            ValueError: If the file format is unsupported
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        content = path.read_text(encoding="utf-8")

        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(content) or {}
        elif path.suffix == ".json":
            data = json.loads(content) if content.strip() else {}
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

        return cls._from_dict(data)

    @classmethod
    def _from_dict(cls, data: dict) -> "SyncConfig":
        """Create SyncConfig from a dictionary."""
        config = cls()

        if "database" in data:
            config.database = DatabaseConfig(**data["database"])
        if "retry" in data:
            config.retry = RetryConfig(**data["retry"])
        if "indexing" in data:
            config.indexing = IndexingConfig(**data["indexing"])
        if "logging" in data:
            config.logging = LoggingConfig(**data["logging"])

        return config

    def apply_env_overrides(self) -> "SyncConfig":
        """
        Apply environment variable overrides to the configuration.

        Environment variables follow the pattern: SUPERTAG_<SECTION>_<KEY>
        Examples:
            - SUPERTAG_DATABASE_PATH
            - SUPERTAG_RETRY_MAX_RETRIES
            - SUPERTAG_LOGGING_LEVEL

        Returns:
            Self with environment overrides applied
        """
        env_mappings = {
            # Database config
            "SUPERTAG_DATABASE_PATH": ("database", "path", str),
            "SUPERTAG_DATABASE_BUSY_TIMEOUT_MS": ("database", "busy_timeout_ms", int),
            "SUPERTAG_DATABASE_JOURNAL_MODE": ("database", "journal_mode", str),
            # Retry config
            "SUPERTAG_RETRY_MAX_RETRIES": ("retry", "max_retries", int),
            "SUPERTAG_RETRY_BASE_DELAY": ("retry", "base_delay", float),
            "SUPERTAG_RETRY_MAX_DELAY": ("retry", "max_delay", float),
            "SUPERTAG_RETRY_JITTER": ("retry", "jitter", float),
            # Indexing config
            "SUPERTAG_INDEXING_MAX_TUPLE_CHILDREN": ("indexing", "max_tuple_children", int),
            "SUPERTAG_INDEXING_ANCESTOR_MAX_DEPTH": ("indexing", "ancestor_max_depth", int),
            "SUPERTAG_INDEXING_TRASH_MAX_DEPTH": ("indexing", "trash_max_depth", int),
            "SUPERTAG_INDEXING_INCLUDE_NESTED_VALUES": (
                "indexing",
                "include_nested_values",
                _parse_bool,
            ),
            "SUPERTAG_INDEXING_NESTED_VALUE_DEPTH": ("indexing", "nested_value_depth", int),
            # Logging config
            "SUPERTAG_LOGGING_LEVEL": ("logging", "level", str),
        }

        for env_var, (section, key, converter) in env_mappings.items():
            value = os.environ.get(env_var)
            if value is not None:
                section_obj = getattr(self, section)
                setattr(section_obj, key, converter(value))

        return self

    def to_dict(self) -> dict:
        """Convert configuration to a dictionary."""
        return asdict(self)

    def to_yaml(self) -> str:
        """Serialize configuration to YAML string."""
        return yaml.dump(self.to_dict(), default_flow_style=False, sort_keys=False)

    def to_json(self) -> str:
        """Serialize configuration to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    def save(self, path: Path | str) -> None:
        """
        Save configuration to a file.

        Args:
            path: Path to save the configuration (.yaml, .yml, or .json)

        Raises:
            ValueError: If the file format is unsupported
        """
        path = Path(path)

        if path.suffix in (".yaml", ".yml"):
            content = self.to_yaml()
        elif path.suffix == ".json":
            content = self.to_json()
        else:
            raise ValueError(f"Unsupported config file format: {path.suffix}")

        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")


def _parse_bool(value: str) -> bool:
    """Parse a string to boolean."""
    return value.lower() in ("true", "1", "yes", "on")


def load_config(config_path: Optional[Path | str] = None, apply_env: bool = True) -> SyncConfig:
    """
    Load configuration with optional environment variable overrides.

    Args:
        config_path: Optional path to config file. If None, uses defaults.
        apply_env: Whether to apply environment variable overrides.

    Returns:
        SyncConfig instance
    """
    if config_path:
        config = SyncConfig.from_file(config_path)
    else:
        config = SyncConfig()

    if apply_env:
        config.apply_env_overrides()

    return config


def configure_logging(config: LoggingConfig) -> None:
    """Apply a LoggingConfig to the root logger."""
    level = getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, format=config.format, force=True)
