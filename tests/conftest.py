"""Shared test fixtures for Gavin."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from gavin.core.inspection_store import InspectionStore
from gavin.core.parser import PipelineParser
from gavin.models.policy import ValidationPolicy
from gavin.models.records import InspectionRecord
from gavin.models.repository import PipelineFile, Repository
from gavin.models.tasks import ValidState

# Line numbers matter to several tests:
#   6  NuGetCommand@2         (standard under the default policy)
#   9  gitversion/setup@0     (task major, not applicable)
#  12  versionSpec: '5.1.0'   (gitversion, non-standard under the default policy)
#  13  DeployTool@7           (not applicable)
SAMPLE_PIPELINE = """\
trigger:
  - main

steps:
  # - task: NuGetCommand@1
  - task: NuGetCommand@2
    inputs:
      command: restore
  - task: gitversion/setup@0
    displayName: Install GitVersion
    inputs:
      versionSpec: '5.1.0'
  - task: DeployTool@7
  - script: echo done
"""

STANDARD_PIPELINE = SAMPLE_PIPELINE.replace("'5.1.0'", "'5.2.0'")


class StubSource:
    """In-memory ``RepositorySource`` that records how it was called.

    Parameters
    ----------
    files:
        ``{full_name: {path: content}}``.
    failures:
        ``{full_name: exception}`` raised instead of returning files.
    delay:
        Seconds each fetch sleeps, so retrievals overlap.
    on_fetch:
        Called with the repository at the start of each fetch.
    block:
        When set, every fetch waits on this event before returning.
    """

    def __init__(
        self,
        files: dict[str, dict[str, str]] | None = None,
        failures: dict[str, BaseException] | None = None,
        *,
        delay: float = 0.0,
        on_fetch: Callable[[Repository], None] | None = None,
        block: asyncio.Event | None = None,
    ) -> None:
        self.files = files or {}
        self.failures = failures or {}
        self.delay = delay
        self.on_fetch = on_fetch
        self.block = block
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def fetch(self, repository: Repository, path_globs) -> list[PipelineFile]:
        name = repository.full_name
        self.calls.append(name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.on_fetch is not None:
                self.on_fetch(repository)
            await asyncio.sleep(self.delay)
            if self.block is not None:
                await self.block.wait()
            if name in self.failures:
                raise self.failures[name]
            return [
                PipelineFile(repository=name, path=path, content=content)
                for path, content in self.files.get(name, {}).items()
            ]
        finally:
            self.in_flight -= 1


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def store(tmp_dir: Path) -> InspectionStore:
    """Provide a fresh InspectionStore backed by a temp SQLite database."""
    return InspectionStore(tmp_dir / "inspections.db", retry_delays=(0.0, 0.0))


@pytest.fixture
def policy() -> ValidationPolicy:
    """Standard versions used throughout the tests."""
    return ValidationPolicy(standard_versions={"gitversion": "5.2.0", "NuGetCommand": "2"})


@pytest.fixture
def parser() -> PipelineParser:
    return PipelineParser()


@pytest.fixture
def sample_file() -> PipelineFile:
    return PipelineFile(repository="acme/api", path="azure-pipelines.yml", content=SAMPLE_PIPELINE)


# ---------------------------------------------------------------------------
# Factories: shared across test modules
# ---------------------------------------------------------------------------


@pytest.fixture
def make_repository() -> Callable[..., Repository]:
    """Factory fixture: build ``acme/<name>`` repositories."""

    def _factory(name: str, organization: str = "acme", **overrides: Any) -> Repository:
        defaults: dict[str, Any] = {
            "organization": organization,
            "name": name,
            "url": f"https://git.example.com/{organization}/{name}.git",
        }
        defaults.update(overrides)
        return Repository(**defaults)

    return _factory


@pytest.fixture
def make_record() -> Callable[..., InspectionRecord]:
    """Factory fixture: build an InspectionRecord with sensible defaults."""

    def _factory(**overrides: Any) -> InspectionRecord:
        defaults: dict[str, Any] = {
            "run_id": "run-1",
            "repository": "acme/api",
            "file_path": "azure-pipelines.yml",
            "action_type": "gitversion",
            "line": 12,
            "column": 20,
            "declared_version": "5.1.0",
            "required_version": "5.2.0",
            "valid_state": ValidState.NON_STANDARD,
        }
        defaults.update(overrides)
        return InspectionRecord(**defaults)

    return _factory


@pytest.fixture
def make_source() -> Callable[..., StubSource]:
    """Factory fixture: build a StubSource."""
    return StubSource
