"""Tests for configuration loading."""

from datetime import timedelta
from pathlib import Path

import pytest
from pydantic import ValidationError

from shared.config import ConfigError, ServerConfig, load_yaml_config, parse_features


class TestServerConfig:
    """Tests for ServerConfig."""

    def test_derived_paths(self, tmp_path):
        config = ServerConfig(workspace_path=tmp_path)

        assert config.data_dir == tmp_path / "secure" / "data"
        assert config.ai_data_dir == tmp_path / "ai-data"
        assert config.scripts_dir == tmp_path / "ai-data" / "scripts"

    def test_explicit_paths_win(self, tmp_path):
        config = ServerConfig(workspace_path=tmp_path, scripts_dir=tmp_path / "custom")

        assert config.scripts_dir == tmp_path / "custom"

    def test_features_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("OPENPACT_FEATURES", "scripts, web,,")

        config = ServerConfig(workspace_path=tmp_path)

        assert config.features == frozenset({"scripts", "web"})

    def test_frozen(self, tmp_path):
        config = ServerConfig(workspace_path=tmp_path)

        with pytest.raises(ValidationError):
            config.dev_mode = True

    def test_access_must_be_shorter_than_refresh(self, tmp_path):
        with pytest.raises(ValidationError):
            ServerConfig(
                workspace_path=tmp_path,
                access_expiry=timedelta(hours=2),
                refresh_expiry=timedelta(hours=1),
            )

    def test_bad_log_level(self, tmp_path):
        with pytest.raises(ValidationError):
            ServerConfig(workspace_path=tmp_path, log_level="chatty")

    @pytest.mark.parametrize(
        "bind,dev_mode,secure",
        [
            ("localhost:8080", False, False),
            ("0.0.0.0:8080", False, True),
            ("0.0.0.0:8080", True, False),
        ],
    )
    def test_secure_cookies(self, tmp_path, bind, dev_mode, secure):
        config = ServerConfig(workspace_path=tmp_path, bind_address=bind, dev_mode=dev_mode)

        assert config.secure_cookies is secure

    def test_ensure_dirs(self, tmp_path):
        config = ServerConfig(workspace_path=tmp_path / "ws")

        config.ensure_dirs()

        assert config.scripts_dir.is_dir()
        assert (config.ai_data_dir / "memory").is_dir()
        assert config.data_dir.is_dir()


class TestYamlConfig:
    """Tests for YAML loading."""

    def test_missing_file(self, tmp_path):
        assert load_yaml_config(tmp_path / "none.yaml") == {}

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            f"workspace_path: {tmp_path}\n"
            "features: scripts,web\n"
            "access_expiry: 60\n"
            "max_concurrency: 4\n"
        )

        config = ServerConfig.from_yaml(path)

        assert config.workspace_path == Path(tmp_path)
        assert config.features == frozenset({"scripts", "web"})
        assert config.access_expiry == timedelta(seconds=60)
        assert config.max_concurrency == 4

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("max_concurrency: 0\n")

        with pytest.raises(ConfigError):
            ServerConfig.from_yaml(path)

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("features: [unclosed\n")

        with pytest.raises(ConfigError):
            load_yaml_config(path)

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- a\n- b\n")

        with pytest.raises(ConfigError):
            load_yaml_config(path)


def test_parse_features():
    assert parse_features(None) == frozenset()
    assert parse_features(["a", " b "]) == frozenset({"a", "b"})
