"""Free-text search and file listing over retrieved pipeline files.

Both operations reuse the ``RepositoryFetcher``: retrieval is bounded by
the same concurrency limit and one repository failing is reported, never
raised.  Nothing is written to the Inspection Store.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from gavin.core.fetcher import FetchOutcome, RepositoryFetcher
from gavin.core.shapes import split_lines
from gavin.core.sources import DEFAULT_PIPELINE_GLOBS, RepositorySource
from gavin.models.repository import PipelineFile, Repository
from gavin.models.summary import RepositoryFailure

logger = logging.getLogger(__name__)


class LineMatch(BaseModel):
    """One matching line, 1-based, with surrounding whitespace stripped."""

    model_config = ConfigDict(frozen=True)

    line: int = Field(ge=1)
    text: str


class FileMatch(BaseModel):
    """Every matching line of one pipeline file."""

    model_config = ConfigDict(frozen=True)

    repository: str
    path: str
    matches: list[LineMatch]


class SearchReport(BaseModel):
    """Result of searching many repositories for one query."""

    model_config = ConfigDict(frozen=True)

    query: str
    files_searched: int = 0
    results: list[FileMatch] = Field(default_factory=list)
    failures: list[RepositoryFailure] = Field(default_factory=list)

    @property
    def match_count(self) -> int:
        return sum(len(result.matches) for result in self.results)


class PipelineListing(BaseModel):
    """Pipeline file paths per repository."""

    model_config = ConfigDict(frozen=True)

    files: dict[str, list[str]] = Field(default_factory=dict)
    failures: list[RepositoryFailure] = Field(default_factory=list)


def search_file(file: PipelineFile, query: str, *, ignore_case: bool = False) -> FileMatch | None:
    """Return the lines of *file* containing *query*, or ``None``."""
    needle = query.casefold() if ignore_case else query
    matches = []
    for line in split_lines(file.content):
        haystack = line.text.casefold() if ignore_case else line.text
        if needle in haystack:
            matches.append(LineMatch(line=line.number, text=line.text.strip()))
    if not matches:
        return None
    return FileMatch(repository=file.repository, path=file.path, matches=matches)


def _failure(outcome: FetchOutcome) -> RepositoryFailure:
    return RepositoryFailure(
        repository=outcome.repository.full_name,
        kind=outcome.failure_kind.value,
        message=outcome.error,
    )


async def search_repositories(
    source: RepositorySource,
    repositories: Sequence[Repository],
    query: str,
    *,
    path_globs: Sequence[str] = DEFAULT_PIPELINE_GLOBS,
    concurrency_limit: int = 4,
    ignore_case: bool = False,
) -> SearchReport:
    """Search the pipeline files of *repositories* for *query*.

    Results are sorted by repository, then path.

    Raises
    ------
    ValueError
        If *query* is empty.
    """
    if not query:
        raise ValueError("Search query must not be empty")
    fetcher = RepositoryFetcher(source, concurrency_limit)
    outcomes = await fetcher.fetch_all(repositories, path_globs)

    files_searched = 0
    results: list[FileMatch] = []
    failures: list[RepositoryFailure] = []
    for outcome in outcomes:
        if not outcome.ok:
            failures.append(_failure(outcome))
            continue
        for file in outcome.files:
            files_searched += 1
            found = search_file(file, query, ignore_case=ignore_case)
            if found is not None:
                results.append(found)

    results.sort(key=lambda result: (result.repository, result.path))
    logger.info(
        "Search for %r: %d file(s) searched, %d with matches, %d repositories failed",
        query,
        files_searched,
        len(results),
        len(failures),
    )
    return SearchReport(
        query=query, files_searched=files_searched, results=results, failures=failures
    )


async def list_pipeline_files(
    source: RepositorySource,
    repositories: Sequence[Repository],
    *,
    path_globs: Sequence[str] = DEFAULT_PIPELINE_GLOBS,
    concurrency_limit: int = 4,
) -> PipelineListing:
    """List the pipeline files of each repository, in repository order."""
    fetcher = RepositoryFetcher(source, concurrency_limit)
    outcomes = await fetcher.fetch_all(repositories, path_globs)
    files: dict[str, list[str]] = {}
    failures: list[RepositoryFailure] = []
    for outcome in outcomes:
        if outcome.ok:
            files[outcome.repository.full_name] = sorted(file.path for file in outcome.files)
        else:
            failures.append(_failure(outcome))
    return PipelineListing(files=files, failures=failures)
