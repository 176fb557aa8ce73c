"""Unit tests for the CLI: command registration and behavior.

Exercises the Typer app via typer.testing.CliRunner with a stub repository
source in place of git.
"""

from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from conftest import SAMPLE_PIPELINE, STANDARD_PIPELINE, StubSource
from gavin.cli.app import app
from gavin.cli.commands import inspect as inspect_command
from gavin.cli.commands import repos as repos_command
from gavin.cli.commands import search as search_command
from gavin.core.inspection_store import InspectionStore
from gavin.core.sources import RetrievalError, RetrievalFailureKind

runner = CliRunner()

CONFIG = """\
standardVersion:
  gitversion: 5.2.0
  NuGetCommand: 2
concurrencyLimit: 2
repositories:
  - https://host/acme/api.git
  - https://host/acme/web.git
"""


@pytest.fixture
def config_file(tmp_dir: Path) -> Path:
    path = tmp_dir / "gavinconfig.yml"
    path.write_text(CONFIG)
    return path


@pytest.fixture
def db_file(tmp_dir: Path) -> Path:
    return tmp_dir / "inspections.db"


@pytest.fixture
def stub_source(monkeypatch) -> StubSource:
    source = StubSource(
        {
            "acme/api": {"azure-pipelines.yml": SAMPLE_PIPELINE},
            "acme/web": {"azure-pipelines.yml": STANDARD_PIPELINE},
        }
    )
    monkeypatch.setattr(inspect_command, "build_source", lambda: source)
    monkeypatch.setattr(repos_command, "build_source", lambda: source)
    monkeypatch.setattr(search_command, "build_source", lambda: source)
    monkeypatch.setattr(inspect_command, "configure_logging", lambda level: None)
    monkeypatch.setattr(search_command, "configure_logging", lambda level: None)
    return source


# ---------------------------------------------------------------------------
# Test: CLI help and registration
# ---------------------------------------------------------------------------


class TestCliApp:
    def test_no_args_shows_help(self):
        result = runner.invoke(app, [])
        # Typer's no_args_is_help may exit with 0 or 2 depending on version
        assert result.exit_code in (0, 2)
        assert "usage" in result.output.lower()

    def test_help_lists_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        for command in (
            "inspect", "records", "usage", "history", "policy", "search", "pipelines", "repos"
        ):
            assert command in result.output

    @pytest.mark.parametrize(
        "args",
        [
            ["inspect", "--help"],
            ["records", "--help"],
            ["usage", "--help"],
            ["history", "--help"],
            ["policy", "--help"],
            ["search", "--help"],
            ["pipelines", "--help"],
            ["repos", "add", "--help"],
            ["repos", "remove", "--help"],
            ["repos", "list", "--help"],
        ],
    )
    def test_subcommand_help(self, args):
        assert runner.invoke(app, args).exit_code == 0


# ---------------------------------------------------------------------------
# Test: inspect
# ---------------------------------------------------------------------------


class TestInspect:
    def test_run_records_results(self, stub_source, config_file, db_file):
        result = runner.invoke(app, ["inspect", "--config", str(config_file), "--db", str(db_file)])
        assert result.exit_code == 0, result.output
        assert sorted(stub_source.calls) == ["acme/api", "acme/web"]
        records = InspectionStore(db_file).query()
        assert {r.repository for r in records} == {"acme/api", "acme/web"}

    def test_strict_fails_on_non_standard(self, stub_source, config_file, db_file):
        result = runner.invoke(
            app, ["inspect", "--config", str(config_file), "--db", str(db_file), "--strict"]
        )
        assert result.exit_code == 1

    def test_strict_passes_when_everything_standard(self, stub_source, config_file, db_file):
        stub_source.files["acme/api"] = {"azure-pipelines.yml": STANDARD_PIPELINE}
        result = runner.invoke(
            app, ["inspect", "--config", str(config_file), "--db", str(db_file), "--strict"]
        )
        assert result.exit_code == 0, result.output

    def test_strict_fails_on_failed_repository(self, stub_source, config_file, db_file):
        stub_source.files["acme/api"] = {"azure-pipelines.yml": STANDARD_PIPELINE}
        stub_source.failures["acme/web"] = RetrievalError(
            "acme/web", RetrievalFailureKind.NOT_FOUND
        )
        loose = runner.invoke(app, ["inspect", "--config", str(config_file), "--db", str(db_file)])
        strict = runner.invoke(
            app, ["inspect", "--config", str(config_file), "--db", str(db_file), "--strict"]
        )
        assert loose.exit_code == 0
        assert strict.exit_code == 1

    def test_explicit_urls_override_config(self, stub_source, config_file, db_file):
        result = runner.invoke(
            app,
            ["inspect", "https://host/acme/web.git", "--config", str(config_file), "--db", str(db_file)],
        )
        assert result.exit_code == 0, result.output
        assert stub_source.calls == ["acme/web"]

    def test_remediate_stages_rewrites(self, stub_source, config_file, db_file, tmp_dir):
        stage = tmp_dir / "staged"
        result = runner.invoke(
            app,
            [
                "inspect",
                "--config", str(config_file),
                "--db", str(db_file),
                "--remediate",
                "--no-dry-run",
                "--stage-dir", str(stage),
            ],
        )
        assert result.exit_code == 0, result.output
        assert (stage / "acme" / "api" / "azure-pipelines.yml").read_text() == STANDARD_PIPELINE
        assert not (stage / "acme" / "web").exists()

    def test_remediate_dry_run_stages_nothing(self, stub_source, config_file, db_file, tmp_dir):
        stage = tmp_dir / "staged"
        result = runner.invoke(
            app,
            [
                "inspect",
                "--config", str(config_file),
                "--db", str(db_file),
                "--remediate",
                "--dry-run",
                "--stage-dir", str(stage),
            ],
        )
        assert result.exit_code == 0, result.output
        assert not stage.exists()

    def test_registry_used_when_config_lists_none(self, stub_source, tmp_dir, db_file):
        config = tmp_dir / "policy-only.yml"
        config.write_text("standardVersion:\n  gitversion: 5.2.0\n")
        runner.invoke(app, ["repos", "add", "https://host/acme/api.git", "--db", str(db_file)])
        result = runner.invoke(app, ["inspect", "--config", str(config), "--db", str(db_file)])
        assert result.exit_code == 0, result.output
        assert stub_source.calls == ["acme/api"]

    def test_nothing_to_inspect(self, stub_source, tmp_dir, db_file):
        result = runner.invoke(
            app, ["inspect", "--config", str(tmp_dir / "absent.yml"), "--db", str(db_file)]
        )
        assert result.exit_code == 2
        assert "No repositories" in result.output

    def test_invalid_config(self, stub_source, tmp_dir, db_file):
        config = tmp_dir / "bad.yml"
        config.write_text("concurrencyLimit: 0\n")
        result = runner.invoke(app, ["inspect", "--config", str(config), "--db", str(db_file)])
        assert result.exit_code == 2
        assert "Invalid configuration" in result.output


# ---------------------------------------------------------------------------
# Test: read-only commands
# ---------------------------------------------------------------------------


class TestReports:
    @pytest.fixture(autouse=True)
    def _inspected(self, stub_source, config_file, db_file):
        result = runner.invoke(app, ["inspect", "--config", str(config_file), "--db", str(db_file)])
        assert result.exit_code == 0, result.output

    def test_records(self, db_file):
        result = runner.invoke(app, ["records", "--db", str(db_file)])
        assert result.exit_code == 0
        assert "8 record(s)" in result.output

    def test_records_filtered_by_state(self, db_file):
        result = runner.invoke(app, ["records", "--db", str(db_file), "--state", "non_standard"])
        assert result.exit_code == 0
        assert "1 record(s)" in result.output

    def test_records_no_match(self, db_file):
        result = runner.invoke(app, ["records", "--db", str(db_file), "--repo", "acme/none"])
        assert result.exit_code == 0
        assert "No matching records" in result.output

    def test_usage(self, db_file):
        result = runner.invoke(app, ["usage", "--db", str(db_file)])
        assert result.exit_code == 0
        assert "gitversion" in result.output

    def test_history_verifies(self, db_file):
        result = runner.invoke(app, ["history", "acme/api", "azure-pipelines.yml", "--db", str(db_file)])
        assert result.exit_code == 0, result.output
        assert "is valid" in result.output

    def test_history_unknown_file(self, db_file):
        result = runner.invoke(app, ["history", "acme/api", "nope.yml", "--db", str(db_file)])
        assert result.exit_code == 1

    def test_policy(self, config_file):
        result = runner.invoke(app, ["policy", "--config", str(config_file)])
        assert result.exit_code == 0
        assert "nugetcommand" in result.output
        assert "5.2.0" in result.output


# ---------------------------------------------------------------------------
# Test: repos
# ---------------------------------------------------------------------------


class TestRepos:
    def test_add_list_remove(self, db_file):
        url = "https://host/acme/api.git"
        added = runner.invoke(app, ["repos", "add", url, "--branch", "develop", "--db", str(db_file)])
        assert added.exit_code == 0
        assert "Registered" in added.output

        listed = runner.invoke(app, ["repos", "list", "--db", str(db_file)])
        assert listed.exit_code == 0
        assert "acme/api" in listed.output
        assert "develop" in listed.output

        removed = runner.invoke(app, ["repos", "remove", url, "--db", str(db_file)])
        assert removed.exit_code == 0
        again = runner.invoke(app, ["repos", "remove", url, "--db", str(db_file)])
        assert again.exit_code == 1

    def test_list_empty(self, db_file):
        result = runner.invoke(app, ["repos", "list", "--db", str(db_file)])
        assert result.exit_code == 0
        assert "No repositories registered" in result.output

    def test_add_with_check_rejects_unreachable(self, db_file, monkeypatch):
        class _Unreachable:
            async def check_reachable(self, repository):
                raise RetrievalError(repository.full_name, RetrievalFailureKind.AUTHENTICATION)

        monkeypatch.setattr(repos_command, "build_source", lambda: _Unreachable())
        result = runner.invoke(
            app, ["repos", "add", "https://host/acme/api.git", "--check", "--db", str(db_file)]
        )
        assert result.exit_code == 1
        assert InspectionStore(db_file).list_repositories() == []

    def test_add_with_check_accepts_reachable(self, db_file, monkeypatch):
        class _Reachable:
            async def check_reachable(self, repository):
                return None

        monkeypatch.setattr(repos_command, "build_source", lambda: _Reachable())
        result = runner.invoke(
            app, ["repos", "add", "https://host/acme/api.git", "--check", "--db", str(db_file)]
        )
        assert result.exit_code == 0
        assert len(InspectionStore(db_file).list_repositories()) == 1

    def test_add_several_urls(self, db_file):
        result = runner.invoke(
            app,
            [
                "repos", "add",
                "https://host/acme/api.git,https://host/acme/web.git",
                "https://host/acme/ops.git",
                "--db", str(db_file),
            ],
        )
        assert result.exit_code == 0, result.output
        assert result.output.count("Registered") == 3
        names = {r.full_name for r in InspectionStore(db_file).list_repositories()}
        assert names == {"acme/api", "acme/web", "acme/ops"}

    def test_add_from_file(self, db_file, tmp_dir):
        url_file = tmp_dir / "repos.txt"
        url_file.write_text(
            "# platform team\nhttps://host/acme/api.git\n\nhttps://host/acme/web.git\n"
        )
        result = runner.invoke(
            app, ["repos", "add", "--from-file", str(url_file), "--db", str(db_file)]
        )
        assert result.exit_code == 0, result.output
        assert len(InspectionStore(db_file).list_repositories()) == 2

    def test_add_without_urls(self, db_file):
        result = runner.invoke(app, ["repos", "add", "--db", str(db_file)])
        assert result.exit_code == 2
        assert "No repository URLs" in result.output

    def test_add_invalid_url_registers_nothing(self, db_file):
        result = runner.invoke(
            app, ["repos", "add", "https://host/acme/api.git", "https://host/", "--db", str(db_file)]
        )
        assert result.exit_code == 2
        assert InspectionStore(db_file).list_repositories() == []

    def test_add_with_check_registers_reachable_ones(self, db_file, monkeypatch):
        class _PartlyReachable:
            async def check_reachable(self, repository):
                if repository.name == "web":
                    raise RetrievalError(repository.full_name, RetrievalFailureKind.NOT_FOUND)

        monkeypatch.setattr(repos_command, "build_source", lambda: _PartlyReachable())
        result = runner.invoke(
            app,
            [
                "repos", "add",
                "https://host/acme/api.git,https://host/acme/web.git",
                "--check",
                "--db", str(db_file),
            ],
        )
        assert result.exit_code == 1
        assert "Cannot reach acme/web" in result.output
        assert [r.full_name for r in InspectionStore(db_file).list_repositories()] == ["acme/api"]


class TestRepoHelpers:
    def test_split_urls(self):
        assert repos_command.split_urls(["a, b", "c", "a,,"]) == ["a", "b", "c"]

    def test_read_url_file(self, tmp_dir):
        path = tmp_dir / "urls.txt"
        path.write_text("  https://host/acme/api.git  \n# comment\n\n")
        assert repos_command.read_url_file(path) == ["https://host/acme/api.git"]


# ---------------------------------------------------------------------------
# Test: search and pipelines
# ---------------------------------------------------------------------------


class TestSearch:
    def test_matches_are_listed(self, stub_source, config_file, db_file):
        result = runner.invoke(
            app, ["search", "versionSpec", "--config", str(config_file), "--db", str(db_file)]
        )
        assert result.exit_code == 0, result.output
        assert "acme/api" in result.output
        assert "5.1.0" in result.output
        assert "2 match(es) in 2 of 2 file(s)" in result.output
        assert not db_file.exists() or InspectionStore(db_file).query() == []

    def test_ignore_case(self, stub_source, config_file, db_file):
        args = ["search", "versionspec", "--config", str(config_file), "--db", str(db_file)]
        assert "No matches" in runner.invoke(app, args).output
        result = runner.invoke(app, [*args, "--ignore-case"])
        assert "2 match(es)" in result.output

    def test_explicit_urls(self, stub_source, config_file, db_file):
        result = runner.invoke(
            app,
            [
                "search", "task:", "https://host/acme/web.git",
                "--config", str(config_file),
                "--db", str(db_file),
            ],
        )
        assert result.exit_code == 0, result.output
        assert stub_source.calls == ["acme/web"]

    def test_failures_are_shown(self, stub_source, config_file, db_file):
        stub_source.failures["acme/web"] = RetrievalError(
            "acme/web", RetrievalFailureKind.AUTHENTICATION, "denied"
        )
        result = runner.invoke(
            app, ["search", "task:", "--config", str(config_file), "--db", str(db_file)]
        )
        assert result.exit_code == 0
        assert "authentication" in result.output

    def test_empty_query(self, stub_source, config_file, db_file):
        result = runner.invoke(
            app, ["search", "", "--config", str(config_file), "--db", str(db_file)]
        )
        assert result.exit_code == 2
        assert stub_source.calls == []

    def test_nothing_to_search(self, stub_source, tmp_dir, db_file):
        result = runner.invoke(
            app, ["search", "task:", "--config", str(tmp_dir / "absent.yml"), "--db", str(db_file)]
        )
        assert result.exit_code == 2


class TestPipelines:
    def test_lists_files(self, stub_source, config_file, db_file):
        stub_source.files["acme/web"]["deploy/release-pipeline.yml"] = "steps: []\n"
        result = runner.invoke(app, ["pipelines", "--config", str(config_file), "--db", str(db_file)])
        assert result.exit_code == 0, result.output
        assert "acme/api" in result.output
        assert "deploy/release-pipeline.yml" in result.output
