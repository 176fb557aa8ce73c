"""Pipeline parser: extracts task references from raw pipeline file text.

The parser is tolerant: content that is not a task invocation is ignored,
and a file that is not pipeline syntax at all yields zero references plus a
recorded ``ParseError`` instead of raising.  Recognition itself is delegated
to the shapes in a ``ShapeRegistry``; the parser never special-cases an
action type.
"""

from __future__ import annotations

import logging

import yaml
from pydantic import BaseModel, ConfigDict, Field

from gavin.core.shapes import DEFAULT_REGISTRY, ShapeRegistry, split_lines
from gavin.models.repository import PipelineFile
from gavin.models.tasks import TaskReference

logger = logging.getLogger(__name__)


class ParseError(ValueError):
    """Raised when a file's content is not pipeline syntax."""


class ParsedFile(BaseModel):
    """References found in one file, plus the parse error if it degraded."""

    model_config = ConfigDict(frozen=True)

    repository: str
    path: str
    references: list[TaskReference] = Field(default_factory=list)
    error: str | None = None


def check_pipeline_syntax(content: str) -> None:
    """Raise ``ParseError`` unless *content* loads as YAML mappings/sequences.

    Empty documents are accepted (they simply hold no tasks).
    """
    try:
        documents = list(yaml.safe_load_all(content))
    except yaml.YAMLError as exc:
        raise ParseError(f"not valid YAML: {exc}") from exc
    for document in documents:
        if document is not None and not isinstance(document, (dict, list)):
            raise ParseError(
                f"top-level value is a {type(document).__name__}, not a pipeline"
            )


class PipelineParser:
    """Turns ``PipelineFile`` content into ``TaskReference`` values.

    Parameters
    ----------
    registry:
        Shapes used for recognition.  Defaults to the built-in registry.
    """

    def __init__(self, registry: ShapeRegistry | None = None) -> None:
        self._registry = registry or DEFAULT_REGISTRY

    @property
    def registry(self) -> ShapeRegistry:
        return self._registry

    def parse(self, file: PipelineFile) -> ParsedFile:
        """Parse one file.  Never raises for malformed content."""
        try:
            references = self.extract(file.path, file.content)
        except ParseError as exc:
            logger.info("Skipping %s:%s: %s", file.repository, file.path, exc)
            return ParsedFile(repository=file.repository, path=file.path, error=str(exc))
        logger.debug(
            "Parsed %s:%s: %d reference(s)", file.repository, file.path, len(references)
        )
        return ParsedFile(repository=file.repository, path=file.path, references=references)

    def extract(self, path: str, content: str) -> list[TaskReference]:
        """Return references in document order; raises ``ParseError``."""
        check_pipeline_syntax(content)
        lines = split_lines(content)
        references: list[TaskReference] = []
        for shape in self._registry.shapes:
            references.extend(shape.extract(path, lines))
        references.sort(key=lambda ref: (ref.location.start, ref.location.end, ref.action_type))
        return references
