"""Tests for the staging write-back."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import SAMPLE_PIPELINE, STANDARD_PIPELINE
from gavin.core.reconciler import ReconcileResult, Rewrite
from gavin.core.writeback import (
    MANIFEST_NAME,
    StagingDirectoryWriteBack,
    WriteBack,
    WriteBackError,
)


def _result(path: str = "azure-pipelines.yml", content: str = STANDARD_PIPELINE) -> ReconcileResult:
    return ReconcileResult(
        repository="acme/api",
        path=path,
        original_content=SAMPLE_PIPELINE,
        content=content,
        rewrites=[
            Rewrite(action_type="gitversion", line=12, column=20, old_version="5.1.0", new_version="5.2.0")
        ],
    )


class TestStagingDirectoryWriteBack:
    def test_satisfies_protocol(self, tmp_dir: Path):
        assert isinstance(StagingDirectoryWriteBack(tmp_dir), WriteBack)

    @pytest.mark.asyncio
    async def test_writes_changed_files(self, tmp_dir: Path, make_repository):
        write_back = StagingDirectoryWriteBack(tmp_dir / "staged")
        repo = make_repository("api")

        written = await write_back.write(repo, [_result(), _result("ci/release-pipeline.yml")])

        assert written == 2
        base = tmp_dir / "staged" / "acme" / "api"
        assert (base / "azure-pipelines.yml").read_text() == STANDARD_PIPELINE
        assert (base / "ci" / "release-pipeline.yml").exists()
        manifest = json.loads((base / MANIFEST_NAME).read_text())
        assert manifest["repository"] == "acme/api"
        assert [f["path"] for f in manifest["files"]] == [
            "azure-pipelines.yml",
            "ci/release-pipeline.yml",
        ]
        assert manifest["files"][0]["rewrites"][0]["new_version"] == "5.2.0"

    @pytest.mark.asyncio
    async def test_line_endings_preserved(self, tmp_dir: Path, make_repository):
        content = STANDARD_PIPELINE.replace("\n", "\r\n")
        write_back = StagingDirectoryWriteBack(tmp_dir)
        await write_back.write(make_repository("api"), [_result(content=content)])
        staged = tmp_dir / "acme" / "api" / "azure-pipelines.yml"
        assert staged.read_bytes() == content.encode("utf-8")

    @pytest.mark.asyncio
    async def test_unchanged_results_skipped(self, tmp_dir: Path, make_repository):
        write_back = StagingDirectoryWriteBack(tmp_dir / "staged")
        unchanged = _result(content=SAMPLE_PIPELINE)
        assert await write_back.write(make_repository("api"), [unchanged]) == 0
        assert not (tmp_dir / "staged").exists()

    @pytest.mark.asyncio
    async def test_path_escape_rejected(self, tmp_dir: Path, make_repository):
        write_back = StagingDirectoryWriteBack(tmp_dir / "staged")
        with pytest.raises(WriteBackError):
            await write_back.write(make_repository("api"), [_result("../../../evil.yml")])
        assert not (tmp_dir / "evil.yml").exists()
