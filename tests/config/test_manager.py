"""
Test suite for ConfigManager.

Covers file loading, environment overrides, explicit overrides, validation
warnings, schema generation and example configs.
"""

import json
import os

import pytest
import yaml

from feedengine.core.config import ConfigManager, EngineConfig
from feedengine.core.exceptions import ConfigurationError, ErrorCode


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path, monkeypatch):
    """Keep the developer's own config files and env vars out of the tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    for name in list(os.environ):
        if name.startswith("FEEDENGINE_"):
            monkeypatch.delenv(name)


class TestLoading:
    """Test configuration sources."""

    def test_defaults_without_sources(self):
        config = ConfigManager().load_config()
        assert config == EngineConfig()

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "custom.yaml"
        path.write_text(yaml.safe_dump({"compiler": {"max_blocks": 30, "warn_blocks": 12}}))

        config = ConfigManager(path).load_config()
        assert config.compiler.max_blocks == 30

    def test_json_file(self, tmp_path):
        path = tmp_path / "custom.json"
        path.write_text(json.dumps({"cache": {"shards": 4}}))
        assert ConfigManager(path).load_config().cache.shards == 4

    def test_default_search_path(self, tmp_path):
        (tmp_path / "feedengine.yaml").write_text("log_level: warning\n")
        assert ConfigManager().load_config().log_level == "WARNING"

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager(tmp_path / "nope.yaml").load_config()
        assert exc_info.value.error_code == ErrorCode.CONFIG_FILE_NOT_FOUND

    def test_non_mapping_file(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            ConfigManager(path).load_config()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("compiler: [unclosed\n")
        with pytest.raises(ConfigurationError):
            ConfigManager(path).load_config()


class TestPrecedence:
    """Overrides beat environment, which beats files."""

    def test_env_over_file(self, tmp_path, monkeypatch):
        path = tmp_path / "c.yaml"
        path.write_text(yaml.safe_dump({"cache": {"ttl_seconds": 300, "shards": 8}}))
        monkeypatch.setenv("FEEDENGINE_CACHE_TTL", "30")

        config = ConfigManager(path).load_config()
        assert config.cache.ttl_seconds == 30.0
        assert config.cache.shards == 8

    def test_overrides_over_env(self, monkeypatch):
        monkeypatch.setenv("FEEDENGINE_MAX_WORKERS", "2")
        config = ConfigManager().load_config(overrides={"workers": {"max_workers": 6}})
        assert config.workers.max_workers == 6

    def test_env_bool(self, monkeypatch):
        monkeypatch.setenv("FEEDENGINE_DEBUG", "yes")
        assert ConfigManager().load_config().debug is True

    def test_bad_env_value(self, monkeypatch):
        monkeypatch.setenv("FEEDENGINE_MAX_BLOCKS", "many")
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager().load_config()
        assert exc_info.value.context.details["config_key"] == "FEEDENGINE_MAX_BLOCKS"

    def test_validation_failure(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigManager().load_config(overrides={"compiler": {"max_blocks": 5, "warn_blocks": 9}})
        assert exc_info.value.error_code == ErrorCode.CONFIG_INVALID_VALUE


class TestValidationAndTooling:
    """Test warnings, schema and example configs."""

    def test_warnings(self):
        manager = ConfigManager()
        manager.load_config(overrides={
            "evaluation": {"preview_budget_ms": 5000, "page_budget_ms": 1000},
            "cache": {"shards": 8, "max_entries": 4},
        })
        warnings = manager.validate_config()
        assert any("preview_budget_ms" in w for w in warnings)
        assert any("shards" in w for w in warnings)

    def test_no_config_loaded(self):
        assert ConfigManager().validate_config() == ["No configuration loaded"]

    def test_schema(self, tmp_path):
        output = tmp_path / "schema.json"
        schema = ConfigManager().generate_schema(output)
        assert "compiler" in schema["properties"]
        assert json.loads(output.read_text()) == schema

    @pytest.mark.parametrize("profile,check", [
        ("default", lambda c: c.store.backend == "memory"),
        ("persistent", lambda c: c.store.backend == "sqlite"),
        ("high-traffic", lambda c: c.cache.shards == 64),
    ])
    def test_example_config_round_trips(self, tmp_path, profile, check):
        path = tmp_path / f"{profile}.yaml"
        ConfigManager().create_example_config(path, profile=profile)
        assert check(ConfigManager(path).load_config())

    def test_unknown_profile(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigManager().create_example_config(tmp_path / "x.yaml", profile="huge")
        assert not (tmp_path / "x.yaml").exists()
