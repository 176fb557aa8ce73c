"""Run-level outcome models.

A run never reports a single pass/fail flag; partial failure is expected
when inspecting many repositories, so the summary carries counts.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from gavin.models.tasks import ValidState


class RepositoryFailure(BaseModel):
    """A repository that could not be retrieved."""

    model_config = ConfigDict(frozen=True)

    repository: str
    kind: str  # RetrievalFailureKind value
    message: str = ""


class RunSummary(BaseModel):
    """Counts describing what one inspection run did."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    repositories_succeeded: list[str] = Field(default_factory=list)
    repositories_failed: list[RepositoryFailure] = Field(default_factory=list)
    files_parsed: int = 0
    files_with_parse_errors: int = 0
    files_unchanged: int = 0
    references_by_state: dict[ValidState, int] = Field(
        default_factory=lambda: {state: 0 for state in ValidState}
    )
    records_written: int = 0
    records_failed: int = 0
    rewrites_applied: int = 0
    rewrites_skipped: int = 0
    reconcile_conflicts: int = 0
    dry_run: bool = False
    cancelled: bool = False

    @property
    def references_classified(self) -> int:
        return sum(self.references_by_state.values())

    def count(self, state: ValidState) -> int:
        return self.references_by_state.get(state, 0)
