"""Task reference and validity state models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, model_validator


class ValidState(str, Enum):
    """Classification result for one task reference.

    ``NOT_APPLICABLE`` means no standard version is configured for the
    action type.  ``UNPARSEABLE`` means a standard exists but the declared
    value is missing or malformed.  The two never share an input.
    """

    STANDARD = "standard"
    NON_STANDARD = "non_standard"
    UNPARSEABLE = "unparseable"
    NOT_APPLICABLE = "not_applicable"


class TaskLocation(BaseModel):
    """Where a reference's version field lives inside its file.

    ``start``/``end`` are character offsets into the file content that
    bracket the version text only.  When the version is absent the span is
    empty (``start == end``) and anchored at the action identifier.
    ``line`` is 1-based, ``column`` is the 0-based offset of ``start``
    within that line.
    """

    model_config = ConfigDict(frozen=True)

    path: str
    line: int
    column: int
    start: int
    end: int

    @model_validator(mode="after")
    def _check_span(self) -> TaskLocation:
        if self.start < 0 or self.end < self.start:
            raise ValueError(f"invalid span [{self.start}, {self.end})")
        return self

    @property
    def key(self) -> str:
        """Stable ``line:column`` key used to supersede older records."""
        return f"{self.line}:{self.column}"

    def overlaps(self, other: TaskLocation) -> bool:
        if self.path != other.path:
            return False
        if self.start == self.end or other.start == other.end:
            return self.start == other.start and self.end == other.end
        return self.start < other.end and other.start < self.end


class TaskReference(BaseModel):
    """One task invocation found in a pipeline file."""

    model_config = ConfigDict(frozen=True)

    action_type: str
    declared_version: str | None = None
    location: TaskLocation
    shape: str = ""  # name of the action shape that recognised it
