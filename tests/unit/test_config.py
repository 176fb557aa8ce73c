"""Tests for process settings and the inspection file."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from gavin.config import (
    ConfigError,
    GavinSettings,
    InspectionConfig,
    configure_logging,
    load_inspection_config,
)
from gavin.core.sources import DEFAULT_PIPELINE_GLOBS


class TestGavinSettings:
    def test_defaults(self, monkeypatch):
        for name in ("GAVIN_DB_PATH", "GAVIN_LOG_LEVEL", "GAVIN_GIT_TOKEN"):
            monkeypatch.delenv(name, raising=False)
        settings = GavinSettings(_env_file=None)
        assert settings.log_level == "INFO"
        assert settings.db_path == Path(".gavin/inspections.db")
        assert settings.config_path == Path("gavinconfig.yml")
        assert settings.git_timeout_seconds == 120.0
        assert settings.store_retry_delays == [0.05, 0.2, 0.5]
        assert settings.git_token_value is None

    def test_env_override(self, monkeypatch, tmp_dir: Path):
        monkeypatch.setenv("GAVIN_DB_PATH", str(tmp_dir / "x.db"))
        monkeypatch.setenv("GAVIN_LOG_LEVEL", "DEBUG")
        settings = GavinSettings(_env_file=None)
        assert settings.db_path == tmp_dir / "x.db"
        assert settings.log_level == "DEBUG"

    def test_token_is_secret(self, monkeypatch):
        monkeypatch.setenv("GAVIN_GIT_TOKEN", "s3cret")
        settings = GavinSettings(_env_file=None)
        assert settings.git_token_value == "s3cret"
        assert "s3cret" not in repr(settings)


class TestLoadInspectionConfig:
    def _write(self, tmp_dir: Path, text: str) -> Path:
        path = tmp_dir / "gavinconfig.yml"
        path.write_text(text)
        return path

    def test_missing_file_gives_defaults(self, tmp_dir: Path):
        config = load_inspection_config(tmp_dir / "absent.yml")
        assert config == InspectionConfig()
        assert config.policy().applicable == frozenset()
        assert config.concurrency_limit == 4
        assert config.dry_run is False
        assert config.pipeline_globs == list(DEFAULT_PIPELINE_GLOBS)

    def test_empty_file_gives_defaults(self, tmp_dir: Path):
        assert load_inspection_config(self._write(tmp_dir, "")) == InspectionConfig()

    def test_full_file(self, tmp_dir: Path):
        path = self._write(
            tmp_dir,
            "standardVersion:\n"
            "  gitversion: 5.2.0\n"
            "  NuGetCommand: 2\n"
            "  DotNetCoreCLI: 2\n"
            "concurrencyLimit: 8\n"
            "dryRun: true\n"
            "repositories:\n"
            "  - https://host/acme/api.git\n"
            "  - url: https://host/acme/web.git\n"
            "    default_branch: develop\n",
        )
        config = load_inspection_config(path)
        assert config.concurrency_limit == 8
        assert config.dry_run is True
        policy = config.policy()
        assert policy.required_version("gitversion") == "5.2.0"
        assert policy.required_version("nugetcommand") == "2"
        assert policy.required_version("dotnetcorecli") == "2"
        repos = config.repository_list()
        assert [r.full_name for r in repos] == ["acme/api", "acme/web"]
        assert repos[1].default_branch == "develop"

    def test_python_names_accepted(self):
        config = InspectionConfig(standard_versions={"bash": "3"}, concurrency_limit=2)
        assert config.policy().required_version("bash") == "3"

    @pytest.mark.parametrize(
        "text",
        [
            "concurrencyLimit: 0\n",
            "concurrencyLimit: many\n",
            "standardVersion: [a, b]\n",
            "unknownOption: 1\n",
            "- just\n- a list\n",
            "standardVersion: {gitversion: [\n",
            "standardVersion:\n  '': 1\n",
            "standardVersion:\n  NuGetCommand: 2.0\n",
            "standardVersion:\n  gitversion: latest\n",
        ],
    )
    def test_invalid_content(self, tmp_dir: Path, text: str):
        with pytest.raises(ConfigError):
            load_inspection_config(self._write(tmp_dir, text))


class TestConfigureLogging:
    def test_installs_rich_handler(self):
        from rich.logging import RichHandler

        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_logging("debug")
            assert root.level == logging.DEBUG
            assert any(isinstance(h, RichHandler) for h in root.handlers)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
