"""Tests for the Reconciler: byte-preserving version rewrites."""

from __future__ import annotations

import pytest

from conftest import SAMPLE_PIPELINE, STANDARD_PIPELINE
from gavin.core.classifier import classify_reference
from gavin.core.parser import PipelineParser
from gavin.core.reconciler import ReconcileConflict, Reconciler, find_overlap
from gavin.models.policy import ValidationPolicy
from gavin.models.repository import PipelineFile
from gavin.models.tasks import TaskLocation, TaskReference, ValidState


def _reconcile(content: str, policy: ValidationPolicy, path: str = "azure-pipelines.yml"):
    parser = PipelineParser()
    file = PipelineFile(repository="acme/api", path=path, content=content)
    refs = parser.extract(path, content)
    states = [classify_reference(ref, policy) for ref in refs]
    return Reconciler(policy).reconcile(file, refs, states)


def _ref(start: int, end: int, version: str | None = "1", line: int = 1) -> TaskReference:
    return TaskReference(
        action_type="bash",
        declared_version=version,
        location=TaskLocation(path="ci.yml", line=line, column=start, start=start, end=end),
    )


class TestReconcile:
    def test_gitversion_example(self, policy: ValidationPolicy):
        result = _reconcile(SAMPLE_PIPELINE, policy)
        assert result.content == STANDARD_PIPELINE
        assert result.changed
        (rewrite,) = result.rewrites
        assert rewrite.action_type == "gitversion"
        assert rewrite.old_version == "5.1.0"
        assert rewrite.new_version == "5.2.0"
        assert rewrite.line == 12

    def test_round_trip_becomes_standard(self, policy: ValidationPolicy):
        result = _reconcile(SAMPLE_PIPELINE, policy)
        refs = PipelineParser().extract("azure-pipelines.yml", result.content)
        gitversion = [r for r in refs if r.action_type == "gitversion"]
        assert gitversion[0].declared_version == "5.2.0"
        assert classify_reference(gitversion[0], policy) is ValidState.STANDARD

    def test_standard_file_is_byte_identical(self, policy: ValidationPolicy):
        result = _reconcile(STANDARD_PIPELINE, policy)
        assert result.content == STANDARD_PIPELINE
        assert not result.changed
        assert result.rewrites == []

    def test_reconcile_is_idempotent(self, policy: ValidationPolicy):
        once = _reconcile(SAMPLE_PIPELINE, policy)
        twice = _reconcile(once.content, policy)
        assert twice.content == once.content

    def test_multiple_rewrites_with_length_changes(self):
        policy = ValidationPolicy(standard_versions={"gitversion": "5.12.0", "NuGetCommand": "2"})
        content = SAMPLE_PIPELINE.replace("NuGetCommand@2", "NuGetCommand@1")
        result = _reconcile(content, policy)
        assert result.content == SAMPLE_PIPELINE.replace("'5.1.0'", "'5.12.0'")
        assert "# - task: NuGetCommand@1" in result.content
        assert [r.action_type for r in result.rewrites] == ["nugetcommand", "gitversion"]

    def test_only_non_standard_references_change(self):
        policy = ValidationPolicy(standard_versions={"gitversion": "5.2.0"})
        content = SAMPLE_PIPELINE.replace("DeployTool@7", "DeployTool@latest")
        result = _reconcile(content, policy)
        assert "DeployTool@latest" in result.content
        assert "NuGetCommand@2" in result.content
        assert "gitversion/setup@0" in result.content

    def test_unparseable_references_untouched(self, policy: ValidationPolicy):
        content = SAMPLE_PIPELINE.replace("NuGetCommand@2", "NuGetCommand@latest")
        result = _reconcile(content, policy)
        assert "NuGetCommand@latest" in result.content

    def test_crlf_and_comments_preserved(self, policy: ValidationPolicy):
        content = SAMPLE_PIPELINE.replace("\n", "\r\n")
        result = _reconcile(content, policy)
        assert result.content == STANDARD_PIPELINE.replace("\n", "\r\n")
        assert "# - task: NuGetCommand@1" in result.content


class TestConflicts:
    def test_overlapping_spans_conflict(self, policy: ValidationPolicy):
        file = PipelineFile(repository="acme/api", path="ci.yml", content="- task: Bash@12345\n")
        refs = [_ref(13, 16), _ref(14, 18)]
        states = [ValidState.NON_STANDARD, ValidState.STANDARD]
        with pytest.raises(ReconcileConflict) as info:
            Reconciler(policy).reconcile(file, refs, states)
        assert len(info.value.spans) == 2
        assert info.value.path == "ci.yml"

    def test_stale_span_conflict(self):
        policy = ValidationPolicy(standard_versions={"bash": "3"})
        content = "- task: Bash@2\n"
        file = PipelineFile(repository="acme/api", path="ci.yml", content=content)
        stale = _ref(13, 14, version="1")
        with pytest.raises(ReconcileConflict):
            Reconciler(policy).reconcile(file, [stale], [ValidState.NON_STANDARD])

    def test_length_mismatch(self, policy: ValidationPolicy, sample_file):
        with pytest.raises(ValueError):
            Reconciler(policy).reconcile(sample_file, [], [ValidState.STANDARD])


class TestFindOverlap:
    def test_disjoint(self):
        assert find_overlap([_ref(0, 2), _ref(2, 4), _ref(10, 12)]) is None

    def test_nested(self):
        assert find_overlap([_ref(0, 10), _ref(3, 4)]) is not None

    def test_duplicate_points(self):
        assert find_overlap([_ref(5, 5, None), _ref(5, 5, None)]) is not None

    def test_point_inside_span_is_not_overlap(self):
        assert find_overlap([_ref(0, 10), _ref(5, 5, None)]) is None

    def test_overlap_later_in_file(self):
        found = find_overlap([_ref(0, 10), _ref(12, 13), _ref(11, 14)])
        assert found is not None
        assert {loc.start for loc in found} == {11, 12}
