"""Tests for YAML configuration loading (grants_config)."""

from __future__ import annotations

import textwrap

import pytest
import yaml

from grants_config import (
    DatabaseConfig,
    EventsConfig,
    GrantsConfig,
    LoggingConfig,
    compute_checksum,
    get_active_config,
)
from grants_config.loader import load_yaml_file, parse_config


def _write(tmp_path, body: str):
    path = tmp_path / "grants.yaml"
    path.write_text(textwrap.dedent(body))
    return path


class TestDefaultSet:
    def test_default_set_loads(self):
        config = get_active_config()

        assert config.name == "default"
        assert config.database == DatabaseConfig(url="sqlite://")
        assert config.logging.level == "INFO"
        assert config.events == EventsConfig(publisher_workers=4, enabled=True)
        assert len(config.checksum) == 64

    def test_load_is_traced(self, captured_logs):
        config = get_active_config()

        traces = [r for r in captured_logs() if r["message"] == "GRANTS_CONFIG_TRACE"]
        assert traces[-1]["config_name"] == "default"
        assert traces[-1]["checksum"] == config.checksum


class TestParsing:
    def test_explicit_values(self, tmp_path):
        path = _write(tmp_path, """
            name: staging
            database:
              url: postgresql://grants@db/grants
              echo: true
              pool_size: 5
              max_overflow: 0
            logging:
              level: debug
            events:
              publisher_workers: 2
              enabled: false
        """)

        config = get_active_config(path)

        assert config.name == "staging"
        assert config.database == DatabaseConfig(
            url="postgresql://grants@db/grants", echo=True, pool_size=5, max_overflow=0
        )
        assert config.logging == LoggingConfig(level="DEBUG")
        assert config.events == EventsConfig(publisher_workers=2, enabled=False)

    def test_missing_sections_take_defaults(self, tmp_path):
        config = get_active_config(_write(tmp_path, "name: minimal\n"))

        assert config.database == DatabaseConfig()
        assert config.logging == LoggingConfig()
        assert config.events == EventsConfig()

    def test_empty_file_is_default_config(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        config = get_active_config(path)
        assert config.name == "default"
        assert config.events == EventsConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_config(tmp_path / "absent.yaml")


class TestValidation:
    @pytest.mark.parametrize(
        "body, message",
        [
            ("tenants: []\n", "Unknown configuration sections"),
            ("database: sqlite\n", "'database' must be a mapping"),
            ("database:\n  pool_size: many\n", "database.pool_size must be an integer"),
            ("database:\n  pool_size: 0\n", "database.pool_size must be >= 1"),
            ("database:\n  echo: 1\n", "database.echo must be a boolean"),
            ("database:\n  url: ''\n", "database.url must not be empty"),
            ("logging:\n  level: LOUD\n", "logging.level must be one of"),
            ("events:\n  publisher_workers: 0\n", "events.publisher_workers must be >= 1"),
            ("events:\n  enabled: yes please\n", "events.enabled must be a boolean"),
        ],
    )
    def test_bad_values_rejected(self, tmp_path, body, message):
        with pytest.raises(ValueError, match=message):
            get_active_config(_write(tmp_path, body))

    def test_non_mapping_document(self, tmp_path):
        path = _write(tmp_path, "- just\n- a list\n")
        with pytest.raises(ValueError, match="top-level YAML must be a mapping"):
            load_yaml_file(path)

    def test_malformed_yaml(self, tmp_path):
        path = _write(tmp_path, "database: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            get_active_config(path)

    def test_schema_objects_are_frozen(self):
        config = GrantsConfig()
        with pytest.raises(AttributeError):
            config.name = "other"


class TestChecksum:
    def test_independent_of_key_order(self):
        first = {"name": "a", "events": {"enabled": True, "publisher_workers": 2}}
        second = {"events": {"publisher_workers": 2, "enabled": True}, "name": "a"}
        assert compute_checksum(first) == compute_checksum(second)

    def test_changes_with_content(self):
        assert compute_checksum({"name": "a"}) != compute_checksum({"name": "b"})

    def test_parsed_config_carries_checksum(self):
        data = {"name": "x", "logging": {"level": "WARNING"}}
        assert parse_config(data).checksum == compute_checksum(data)
