"""Reconciler: rewrites non-standard version fields to the standard value.

Only the characters inside a NON_STANDARD reference's version span change;
everything else in the file, including line endings, quoting and comments,
is carried over untouched.  Write-back (commit/push) is not done here: the
caller receives the rewritten content and decides what to do with it.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from gavin.models.policy import ValidationPolicy
from gavin.models.repository import PipelineFile
from gavin.models.tasks import TaskLocation, TaskReference, ValidState

logger = logging.getLogger(__name__)


class ReconcileConflict(RuntimeError):
    """Raised when reference spans overlap or no longer match the file."""

    def __init__(self, path: str, message: str, spans: Sequence[TaskLocation] = ()) -> None:
        super().__init__(f"{path}: {message}")
        self.path = path
        self.spans = list(spans)


class Rewrite(BaseModel):
    """One version field replacement."""

    model_config = ConfigDict(frozen=True)

    action_type: str
    line: int
    column: int
    old_version: str
    new_version: str


class ReconcileResult(BaseModel):
    """Outcome of reconciling one file."""

    model_config = ConfigDict(frozen=True)

    repository: str
    path: str
    original_content: str = Field(repr=False)
    content: str = Field(repr=False)
    rewrites: list[Rewrite] = Field(default_factory=list)

    @property
    def changed(self) -> bool:
        return self.content != self.original_content


def find_overlap(references: Sequence[TaskReference]) -> tuple[TaskLocation, TaskLocation] | None:
    """Return the first pair of overlapping locations, if any."""
    ordered = sorted(references, key=lambda r: (r.location.start, r.location.end))
    seen_points: dict[int, TaskLocation] = {}
    furthest: TaskLocation | None = None
    for ref in ordered:
        loc = ref.location
        if loc.start == loc.end:
            if loc.start in seen_points:
                return seen_points[loc.start], loc
            seen_points[loc.start] = loc
            continue
        if furthest is not None and furthest.overlaps(loc):
            return furthest, loc
        if furthest is None or loc.end > furthest.end:
            furthest = loc
    return None


class Reconciler:
    """Applies the policy's standard versions to non-standard references.

    Parameters
    ----------
    policy:
        The run's validation policy; supplies the replacement values.
    """

    def __init__(self, policy: ValidationPolicy) -> None:
        self._policy = policy

    def reconcile(
        self,
        file: PipelineFile,
        references: Sequence[TaskReference],
        states: Sequence[ValidState],
    ) -> ReconcileResult:
        """Rewrite every NON_STANDARD reference in *file*.

        Raises
        ------
        ReconcileConflict
            If two reference spans overlap, or a span no longer holds the
            declared version.  The file is left unmodified.
        ValueError
            If ``references`` and ``states`` differ in length.
        """
        if len(references) != len(states):
            raise ValueError(
                f"{len(references)} references but {len(states)} states for {file.path}"
            )

        overlap = find_overlap(references)
        if overlap is not None:
            first, second = overlap
            raise ReconcileConflict(
                file.path,
                f"version spans at line {first.line} col {first.column} and "
                f"line {second.line} col {second.column} overlap",
                overlap,
            )

        content = file.content
        rewrites: list[Rewrite] = []
        targets = [
            ref for ref, state in zip(references, states) if state is ValidState.NON_STANDARD
        ]
        for ref in sorted(targets, key=lambda r: r.location.start, reverse=True):
            required = self._policy.required_version(ref.action_type)
            if required is None:
                continue
            loc = ref.location
            current = content[loc.start : loc.end]
            if ref.declared_version is None or current != ref.declared_version:
                raise ReconcileConflict(
                    file.path,
                    f"line {loc.line} col {loc.column} holds {current!r}, "
                    f"expected {ref.declared_version!r}",
                    [loc],
                )
            content = content[: loc.start] + required + content[loc.end :]
            rewrites.append(
                Rewrite(
                    action_type=ref.action_type,
                    line=loc.line,
                    column=loc.column,
                    old_version=current,
                    new_version=required,
                )
            )

        rewrites.reverse()
        if rewrites:
            logger.debug("Reconciled %s:%s: %d rewrite(s)", file.repository, file.path, len(rewrites))
        return ReconcileResult(
            repository=file.repository,
            path=file.path,
            original_content=file.content,
            content=content,
            rewrites=rewrites,
        )
