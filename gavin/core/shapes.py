"""Action shapes: how each kind of task reference is recognised and validated.

An action shape pairs a *version-field extractor* (find the references of
this shape in a pipeline file and the exact span of their version text) with
a *version-syntax validator* (decide whether a declared value is in a
recognised format).  The parser runs every registered shape; the classifier
asks the registry which shape owns an action type to pick the validator.

Adding support for a new action type means registering one more shape.
Shapes claim action types explicitly; exactly one *default* shape may claim
the open-ended remainder.  Two shapes claiming the same action type make the
validity model ambiguous and are rejected when the registry is built.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Iterator, Sequence
from typing import NamedTuple, Protocol, runtime_checkable

from gavin.models.policy import normalize_action_type
from gavin.models.tasks import TaskLocation, TaskReference


class ClassificationAmbiguity(RuntimeError):
    """Raised when the validity model cannot map an action type to one shape."""


class SourceLine(NamedTuple):
    """One line of a pipeline file with its position in the full text."""

    number: int  # 1-based
    offset: int  # character offset of the first character
    text: str  # without the line terminator


def split_lines(content: str) -> list[SourceLine]:
    """Split *content* into ``SourceLine`` values, keeping exact offsets."""
    lines: list[SourceLine] = []
    offset = 0
    for number, raw in enumerate(content.splitlines(keepends=True), start=1):
        text = raw.rstrip("\r\n")
        lines.append(SourceLine(number, offset, text))
        offset += len(raw)
    return lines


def is_comment(line: SourceLine) -> bool:
    stripped = line.text.lstrip()
    return stripped.startswith("#") or stripped.startswith("//")


def make_location(path: str, line: SourceLine, start: int, end: int) -> TaskLocation:
    """Build a TaskLocation from line-relative ``start``/``end`` offsets."""
    return TaskLocation(
        path=path,
        line=line.number,
        column=start,
        start=line.offset + start,
        end=line.offset + end,
    )


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ActionShape(Protocol):
    """Protocol every action shape satisfies.

    ``action_types`` lists the action types the shape claims explicitly.
    An empty set marks an open-ended default shape.
    """

    name: str
    action_types: frozenset[str]

    def extract(self, path: str, lines: Sequence[SourceLine]) -> Iterator[TaskReference]:
        """Yield every reference of this shape found in *lines*."""
        ...

    def is_valid_version(self, version: str) -> bool:
        """Return ``True`` if *version* is in this shape's recognised syntax."""
        ...


# ---------------------------------------------------------------------------
# Azure task shape: ``- task: Name@Major``
# ---------------------------------------------------------------------------


_TASK_LINE = re.compile(
    r"""^\s*(?:-\s*)?task:\s*
        (?P<quote>['"]?)
        (?P<name>[\w.\-/]+)
        (?:@(?P<version>[^\s#'"]*))?
        (?P=quote)""",
    re.VERBOSE,
)

_MAJOR_VERSION = re.compile(r"^\d+$")


class AzureTaskShape:
    """Generic ``task: Name@Major`` reference.

    The action type is the lower-cased task name and the declared version
    is whatever follows ``@``.  A task without ``@`` has no declared
    version.  This is the default shape: it owns every action type that no
    other shape claims.
    """

    name = "azure-task"
    action_types: frozenset[str] = frozenset()

    def extract(self, path: str, lines: Sequence[SourceLine]) -> Iterator[TaskReference]:
        for line in lines:
            if is_comment(line):
                continue
            match = _TASK_LINE.match(line.text)
            if not match:
                continue
            if match.group("version") is not None:
                start, end = match.span("version")
                version: str | None = match.group("version")
            else:
                start = end = match.end("name")
                version = None
            yield TaskReference(
                action_type=normalize_action_type(match.group("name")),
                declared_version=version,
                location=make_location(path, line, start, end),
                shape=self.name,
            )

    def is_valid_version(self, version: str) -> bool:
        return bool(_MAJOR_VERSION.match(version))


# ---------------------------------------------------------------------------
# GitVersion shape: ``gitversion/setup`` + ``inputs.versionSpec``
# ---------------------------------------------------------------------------


_GITVERSION_SETUP = re.compile(
    r"""^\s*(?:-\s*)?task:\s*['"]?(?P<name>gitversion/setup)(?:@[^\s#'"]*)?""",
    re.VERBOSE | re.IGNORECASE,
)

_VERSION_SPEC = re.compile(
    r"""^\s*versionSpec:\s*
        (?P<quote>['"]?)
        (?P<version>[^'"#\s]*)
        (?P=quote)""",
    re.VERBOSE,
)

_TOOL_VERSION = re.compile(r"^v?\d+(?:\.(?:\d+|x|\*))*$", re.IGNORECASE)

_LOOKAHEAD_LINES = 10


class GitVersionSpecShape:
    """The GitVersion tool version declared by ``gitversion/setup``.

    The task major (``@0``) only selects the task implementation; the tool
    version that matters is the ``versionSpec`` input a few lines below.
    The look-ahead is bounded and stops at the next ``task:`` line, so a
    ``versionSpec`` belonging to another task is never picked up.  Without a
    ``versionSpec`` the reference has no declared version and is anchored at
    the start of the task name.
    """

    name = "gitversion-spec"
    action_types: frozenset[str] = frozenset({"gitversion"})

    def extract(self, path: str, lines: Sequence[SourceLine]) -> Iterator[TaskReference]:
        for index, line in enumerate(lines):
            if is_comment(line):
                continue
            match = _GITVERSION_SETUP.match(line.text)
            if match:
                yield self._reference_for(path, lines, index, match.start("name"))

    def _reference_for(
        self, path: str, lines: Sequence[SourceLine], index: int, anchor: int
    ) -> TaskReference:
        for follower in lines[index + 1 : index + 1 + _LOOKAHEAD_LINES]:
            if is_comment(follower):
                continue
            if "task:" in follower.text:
                break
            match = _VERSION_SPEC.match(follower.text)
            if match:
                start, end = match.span("version")
                return TaskReference(
                    action_type="gitversion",
                    declared_version=match.group("version"),
                    location=make_location(path, follower, start, end),
                    shape=self.name,
                )
        return TaskReference(
            action_type="gitversion",
            declared_version=None,
            location=make_location(path, lines[index], anchor, anchor),
            shape=self.name,
        )

    def is_valid_version(self, version: str) -> bool:
        return bool(_TOOL_VERSION.match(version))


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class ShapeRegistry:
    """Maps action types to the shape that recognises and validates them.

    Parameters
    ----------
    shapes:
        Shapes to register, in recognition order.  At most one may be a
        default (open-ended) shape.
    """

    def __init__(self, shapes: Iterable[ActionShape] = ()) -> None:
        self._shapes: list[ActionShape] = []
        self._owners: dict[str, ActionShape] = {}
        self._default: ActionShape | None = None
        for shape in shapes:
            self.register(shape)

    def register(self, shape: ActionShape) -> None:
        """Add *shape*, rejecting any overlapping claim."""
        if not isinstance(shape, ActionShape):
            raise TypeError(f"{shape!r} does not satisfy the ActionShape protocol")
        if not shape.action_types:
            if self._default is not None:
                raise ClassificationAmbiguity(
                    f"Shapes {self._default.name!r} and {shape.name!r} both claim "
                    "to be the default shape."
                )
            self._default = shape
        for action_type in shape.action_types:
            key = normalize_action_type(action_type)
            owner = self._owners.get(key)
            if owner is not None:
                raise ClassificationAmbiguity(
                    f"Action type {key!r} is claimed by both {owner.name!r} "
                    f"and {shape.name!r}."
                )
            self._owners[key] = shape
        self._shapes.append(shape)

    @property
    def shapes(self) -> list[ActionShape]:
        return list(self._shapes)

    def shape_for(self, action_type: str) -> ActionShape | None:
        """Return the shape owning *action_type*, or the default shape."""
        return self._owners.get(normalize_action_type(action_type), self._default)


def default_registry() -> ShapeRegistry:
    """Registry with every built-in shape."""
    return ShapeRegistry([AzureTaskShape(), GitVersionSpecShape()])


DEFAULT_REGISTRY = default_registry()
