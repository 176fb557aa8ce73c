"""Persisted inspection record models.

The Inspection Store is append-only:
- A new record for the same (repository, file path, location) supersedes
  the previous one logically; older records stay in the table for history.
- Each record is sealed with a SHA-256 hash that links to the previous
  record for the same location, so history can be verified later.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from gavin.models.tasks import ValidState


class InspectionRecord(BaseModel):
    """One classified task reference, as written to the store."""

    model_config = ConfigDict(frozen=True)

    record_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str = ""
    repository: str
    file_path: str
    action_type: str
    line: int
    column: int
    declared_version: str | None = None
    required_version: str | None = None
    valid_state: ValidState
    inspected_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    previous_record_hash: str = ""
    record_hash: str = ""  # computed by the store on append

    @property
    def location_key(self) -> str:
        return f"{self.line}:{self.column}"


class InspectionQuery(BaseModel):
    """Filter for ``InspectionStore.query``.

    ``latest_only`` keeps just the newest record per location, which is the
    current state of the organization; set it to ``False`` for full history.
    """

    model_config = ConfigDict(frozen=True)

    valid_state: ValidState | None = None
    repository: str | None = None
    action_type: str | None = None
    run_id: str | None = None
    latest_only: bool = True
    limit: int | None = None


class TaskUsage(BaseModel):
    """How many places use one version of one action type."""

    model_config = ConfigDict(frozen=True)

    action_type: str
    declared_version: str | None
    repositories: dict[str, list[str]] = Field(default_factory=dict)  # repo -> paths

    @property
    def occurrences(self) -> int:
        return sum(len(paths) for paths in self.repositories.values())
