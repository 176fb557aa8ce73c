"""Repository fetcher: bounded-concurrency retrieval with failure isolation.

At most ``concurrency_limit`` retrievals are in flight at once.  Each
repository yields a ``FetchOutcome``: either its pipeline files or a
failure kind and message.  One repository failing never stops the others.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence

from pydantic import BaseModel, ConfigDict, Field

from gavin.core.sources import RepositorySource, RetrievalError, RetrievalFailureKind
from gavin.models.repository import PipelineFile, Repository

logger = logging.getLogger(__name__)


class FetchOutcome(BaseModel):
    """Result of retrieving one repository."""

    model_config = ConfigDict(frozen=True)

    repository: Repository
    files: list[PipelineFile] = Field(default_factory=list)
    failure_kind: RetrievalFailureKind | None = None
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.failure_kind is None


class RepositoryFetcher:
    """Runs a ``RepositorySource`` over many repositories.

    Parameters
    ----------
    source:
        The retrieval backend.
    concurrency_limit:
        Maximum number of simultaneous retrievals.
    """

    def __init__(self, source: RepositorySource, concurrency_limit: int = 4) -> None:
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be positive, got {concurrency_limit}")
        self._source = source
        self._limit = concurrency_limit
        self._gate = asyncio.Semaphore(concurrency_limit)
        self._stopping = asyncio.Event()

    @property
    def concurrency_limit(self) -> int:
        return self._limit

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def stop(self) -> None:
        """Stop starting new retrievals; in-flight ones run to completion."""
        if not self._stopping.is_set():
            logger.info("Fetcher stopping, no new retrievals will start")
        self._stopping.set()

    async def retrieve(
        self, repository: Repository, path_globs: Sequence[str]
    ) -> FetchOutcome:
        """Retrieve one repository through the concurrency gate."""
        if self._stopping.is_set():
            return self._cancelled(repository)
        async with self._gate:
            if self._stopping.is_set():
                return self._cancelled(repository)
            try:
                files = await self._source.fetch(repository, path_globs)
            except RetrievalError as exc:
                logger.warning(
                    "Retrieval failed for %s (%s): %s",
                    repository.full_name,
                    exc.kind.value,
                    exc.message or "no details",
                )
                return FetchOutcome(
                    repository=repository, failure_kind=exc.kind, error=exc.message
                )
            except Exception as exc:
                logger.exception("Unexpected retrieval error for %s", repository.full_name)
                return FetchOutcome(
                    repository=repository,
                    failure_kind=RetrievalFailureKind.NETWORK,
                    error=str(exc),
                )

        if not files:
            logger.warning("No pipeline files matched in %s", repository.full_name)
            return FetchOutcome(
                repository=repository, failure_kind=RetrievalFailureKind.NO_MATCHING_FILES
            )
        return FetchOutcome(repository=repository, files=list(files))

    async def fetch_all(
        self, repositories: Sequence[Repository], path_globs: Sequence[str]
    ) -> list[FetchOutcome]:
        """Retrieve every repository; outcomes are in input order."""
        return list(
            await asyncio.gather(*(self.retrieve(repo, path_globs) for repo in repositories))
        )

    @staticmethod
    def _cancelled(repository: Repository) -> FetchOutcome:
        return FetchOutcome(
            repository=repository,
            failure_kind=RetrievalFailureKind.CANCELLED,
            error="run stopped before retrieval started",
        )
