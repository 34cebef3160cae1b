"""
Property-based tests for SyncConfig round-trip serialization and overrides.

**Feature: supertag-index, Property 12: Configuration Round-Trip**
**Validates: Requirements 9.1**
"""

import tempfile
from pathlib import Path

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from supertag_index.core.config import (
    DatabaseConfig,
    IndexingConfig,
    LoggingConfig,
    RetryConfig,
    SyncConfig,
    load_config,
)

# Strategies for generating valid configuration values
safe_text = st.text(
    alphabet=st.characters(
        whitelist_categories=("L", "N", "P", "S"),
        blacklist_characters="\x00\n\r\t",
    ),
    min_size=1,
    max_size=50,
).filter(lambda s: s.strip() != "")

db_path = st.from_regex(r"[a-z0-9_]{1,12}(/[a-z0-9_]{1,12}){0,2}\.db", fullmatch=True)

log_level = st.sampled_from(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])

positive_float = st.floats(min_value=0.001, max_value=60.0, allow_nan=False, allow_infinity=False)


@st.composite
def database_config_strategy(draw):
    """Generate valid DatabaseConfig instances."""
    return DatabaseConfig(
        path=draw(db_path),
        busy_timeout_ms=draw(st.integers(min_value=0, max_value=60000)),
        journal_mode=draw(st.sampled_from(["WAL", "DELETE", "TRUNCATE"])),
    )


@st.composite
def retry_config_strategy(draw):
    """Generate valid RetryConfig instances."""
    return RetryConfig(
        max_retries=draw(st.integers(min_value=1, max_value=20)),
        base_delay=draw(positive_float),
        max_delay=draw(positive_float),
        jitter=draw(positive_float),
    )


@st.composite
def indexing_config_strategy(draw):
    """Generate valid IndexingConfig instances."""
    return IndexingConfig(
        max_tuple_children=draw(st.integers(min_value=2, max_value=500)),
        ancestor_max_depth=draw(st.integers(min_value=1, max_value=100)),
        trash_max_depth=draw(st.integers(min_value=1, max_value=100)),
        include_nested_values=draw(st.booleans()),
        nested_value_depth=draw(st.integers(min_value=0, max_value=10)),
    )


@st.composite
def logging_config_strategy(draw):
    """Generate valid LoggingConfig instances."""
    return LoggingConfig(
        level=draw(log_level),
        format=draw(safe_text),
    )


@st.composite
def sync_config_strategy(draw):
    """Generate valid SyncConfig instances."""
    return SyncConfig(
        database=draw(database_config_strategy()),
        retry=draw(retry_config_strategy()),
        indexing=draw(indexing_config_strategy()),
        logging=draw(logging_config_strategy()),
    )


@given(config=sync_config_strategy())
@settings(max_examples=100)
def test_config_yaml_round_trip(config: SyncConfig):
    """
    *For any* valid SyncConfig, saving to YAML and loading it back should
    produce an equivalent configuration.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yaml_path = Path(tmpdir) / "config.yaml"
        config.save(yaml_path)
        loaded_config = SyncConfig.from_file(yaml_path)
        assert config.to_dict() == loaded_config.to_dict()


@given(config=sync_config_strategy())
@settings(max_examples=100)
def test_config_json_round_trip(config: SyncConfig):
    """
    *For any* valid SyncConfig, saving to JSON and loading it back should
    produce an equivalent configuration.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        json_path = Path(tmpdir) / "config.json"
        config.save(json_path)
        loaded_config = SyncConfig.from_file(json_path)
        assert config.to_dict() == loaded_config.to_dict()


def test_defaults_come_from_packaged_yaml():
    """Defaults match the values shipped in defaults.yaml."""
    config = SyncConfig()

    assert config.database.path == ".supertag/index.db"
    assert config.database.busy_timeout_ms == 5000
    assert config.database.journal_mode == "WAL"
    assert config.retry.max_retries == 5
    assert config.retry.base_delay == pytest.approx(0.1)
    assert config.retry.max_delay == pytest.approx(2.0)
    assert config.indexing.max_tuple_children == 50
    assert config.indexing.ancestor_max_depth == 10
    assert config.indexing.trash_max_depth == 20
    assert config.indexing.include_nested_values is False


def test_partial_file_keeps_other_sections_default():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "config.yaml"
        path.write_text("retry:\n  max_retries: 2\n", encoding="utf-8")

        config = SyncConfig.from_file(path)

        assert config.retry.max_retries == 2
        assert config.database == DatabaseConfig()
        assert config.indexing == IndexingConfig()


def test_env_overrides_apply(monkeypatch):
    monkeypatch.setenv("SUPERTAG_DATABASE_PATH", "/tmp/override.db")
    monkeypatch.setenv("SUPERTAG_RETRY_MAX_RETRIES", "9")
    monkeypatch.setenv("SUPERTAG_RETRY_BASE_DELAY", "0.25")
    monkeypatch.setenv("SUPERTAG_INDEXING_INCLUDE_NESTED_VALUES", "yes")
    monkeypatch.setenv("SUPERTAG_LOGGING_LEVEL", "DEBUG")

    config = load_config()

    assert config.database.path == "/tmp/override.db"
    assert config.retry.max_retries == 9
    assert config.retry.base_delay == pytest.approx(0.25)
    assert config.indexing.include_nested_values is True
    assert config.logging.level == "DEBUG"


def test_env_overrides_can_be_skipped(monkeypatch):
    monkeypatch.setenv("SUPERTAG_RETRY_MAX_RETRIES", "9")

    config = load_config(apply_env=False)

    assert config.retry.max_retries == 5


def test_missing_config_file_raises():
    with pytest.raises(FileNotFoundError):
        SyncConfig.from_file("/nonexistent/config.yaml")


def test_unsupported_config_format_raises():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "config.toml"
        path.write_text("", encoding="utf-8")
        with pytest.raises(ValueError, match="Unsupported"):
            SyncConfig.from_file(path)
