"""Inspection engine: runs fetch, parse, classify, record and reconcile.

One asyncio task per repository.  Each task retrieves through the shared
``RepositoryFetcher`` gate, then parses and classifies inline (pure and
cheap) and writes records through the store in a worker thread.  The only
suspension points are retrieval, store writes and write-back.

Each repository task owns its own ``_RepositoryTally``; the tallies are
merged into the ``RunSummary`` once all tasks have finished, so no mutable
state is shared between tasks.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone

from gavin.core.classifier import check_policy, classify_reference
from gavin.core.fetcher import RepositoryFetcher
from gavin.core.hasher import content_digest, policy_digest
from gavin.core.inspection_store import InspectionStore, StoreError
from gavin.core.parser import PipelineParser
from gavin.core.reconciler import ReconcileConflict, Reconciler, ReconcileResult
from gavin.core.shapes import DEFAULT_REGISTRY, ShapeRegistry
from gavin.core.sources import DEFAULT_PIPELINE_GLOBS, RepositorySource
from gavin.core.writeback import WriteBack, WriteBackError
from gavin.models.policy import ValidationPolicy
from gavin.models.records import InspectionRecord
from gavin.models.repository import PipelineFile, Repository
from gavin.models.summary import RepositoryFailure, RunSummary
from gavin.models.tasks import TaskReference, ValidState

logger = logging.getLogger(__name__)


@dataclass
class _RepositoryTally:
    repository: str
    succeeded: bool = False
    failure: RepositoryFailure | None = None
    files_parsed: int = 0
    files_with_parse_errors: int = 0
    files_unchanged: int = 0
    by_state: dict[ValidState, int] = field(
        default_factory=lambda: {state: 0 for state in ValidState}
    )
    records_written: int = 0
    records_failed: int = 0
    rewrites_applied: int = 0
    rewrites_skipped: int = 0
    reconcile_conflicts: int = 0


def _merge(
    run_id: str,
    started_at: datetime,
    tallies: Sequence[_RepositoryTally],
    *,
    dry_run: bool,
    cancelled: bool,
) -> RunSummary:
    by_state = {state: 0 for state in ValidState}
    for tally in tallies:
        for state, count in tally.by_state.items():
            by_state[state] += count
    return RunSummary(
        run_id=run_id,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
        repositories_succeeded=[t.repository for t in tallies if t.succeeded],
        repositories_failed=[t.failure for t in tallies if t.failure is not None],
        files_parsed=sum(t.files_parsed for t in tallies),
        files_with_parse_errors=sum(t.files_with_parse_errors for t in tallies),
        files_unchanged=sum(t.files_unchanged for t in tallies),
        references_by_state=by_state,
        records_written=sum(t.records_written for t in tallies),
        records_failed=sum(t.records_failed for t in tallies),
        rewrites_applied=sum(t.rewrites_applied for t in tallies),
        rewrites_skipped=sum(t.rewrites_skipped for t in tallies),
        reconcile_conflicts=sum(t.reconcile_conflicts for t in tallies),
        dry_run=dry_run,
        cancelled=cancelled,
    )


class InspectionEngine:
    """Inspects many repositories against one validation policy.

    Parameters
    ----------
    source:
        Repository retrieval backend.
    store:
        Inspection store; the only writer of records.
    policy:
        Immutable policy shared by every repository task.
    concurrency_limit:
        Maximum simultaneous retrievals.
    path_globs:
        Globs describing pipeline files.
    registry:
        Action shapes for parsing and classification.
    write_back:
        Receives reconciled content.  Without one, rewrites are skipped.
    dry_run:
        Compute rewrites but never hand them to ``write_back``.

    Raises
    ------
    ValueError
        If *concurrency_limit* is below one or a standard version in
        *policy* is outside its action shape's syntax.
    """

    def __init__(
        self,
        source: RepositorySource,
        store: InspectionStore,
        policy: ValidationPolicy,
        *,
        concurrency_limit: int = 4,
        path_globs: Sequence[str] = DEFAULT_PIPELINE_GLOBS,
        registry: ShapeRegistry | None = None,
        write_back: WriteBack | None = None,
        dry_run: bool = False,
    ) -> None:
        if concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be positive, got {concurrency_limit}")
        check_policy(policy, registry or DEFAULT_REGISTRY)
        self._source = source
        self._store = store
        self._policy = policy
        self._limit = concurrency_limit
        self._path_globs = tuple(path_globs)
        self._registry = registry or DEFAULT_REGISTRY
        self._parser = PipelineParser(self._registry)
        self._reconciler = Reconciler(policy)
        self._write_back = write_back
        self._dry_run = dry_run
        self._policy_digest = policy_digest(policy)
        self._fetcher: RepositoryFetcher | None = None

    @property
    def policy(self) -> ValidationPolicy:
        return self._policy

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    def cancel(self) -> None:
        """Cooperatively stop the current run: no new retrievals start."""
        if self._fetcher is not None:
            self._fetcher.stop()

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(
        self,
        repositories: Sequence[Repository],
        *,
        remediate: bool = False,
        full: bool = False,
    ) -> RunSummary:
        """Inspect *repositories* and return the run summary.

        Per-repository failures are reported in the summary, never raised.

        Raises
        ------
        StoreError
            If the run itself cannot be registered in the store.
        """
        run_id = str(uuid.uuid4())
        started_at = datetime.now(timezone.utc)
        await asyncio.to_thread(self._store.begin_run, run_id, started_at)
        logger.info(
            "Run %s: inspecting %d repositories (limit=%d, remediate=%s, dry_run=%s)",
            run_id,
            len(repositories),
            self._limit,
            remediate,
            self._dry_run,
        )

        fetcher = RepositoryFetcher(self._source, self._limit)
        self._fetcher = fetcher
        tallies = [_RepositoryTally(repository=repo.full_name) for repo in repositories]
        tasks = [
            asyncio.create_task(
                self._inspect_repository(fetcher, repo, run_id, tally, remediate=remediate, full=full),
                name=f"inspect:{repo.full_name}",
            )
            for repo, tally in zip(repositories, tallies)
        ]
        try:
            results = await asyncio.gather(*tasks, return_exceptions=True)
        except asyncio.CancelledError:
            fetcher.stop()
            for task in tasks:
                task.cancel()
            summary = _merge(run_id, started_at, tallies, dry_run=self._dry_run, cancelled=True)
            # the summary write completes even if the task is cancelled again
            await asyncio.shield(asyncio.to_thread(self._finish, summary))
            logger.warning("Run %s cancelled", run_id)
            raise
        finally:
            self._fetcher = None

        for repo, tally, result in zip(repositories, tallies, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Inspection of %s failed unexpectedly",
                    repo.full_name,
                    exc_info=(type(result), result, result.__traceback__),
                )
                tally.succeeded = False
                tally.failure = RepositoryFailure(
                    repository=repo.full_name, kind="internal", message=str(result)
                )

        summary = _merge(
            run_id, started_at, tallies, dry_run=self._dry_run, cancelled=fetcher.stopping
        )
        await asyncio.to_thread(self._finish, summary)
        logger.info(
            "Run %s finished: %d succeeded, %d failed, %d reference(s), %d rewrite(s)",
            run_id,
            len(summary.repositories_succeeded),
            len(summary.repositories_failed),
            summary.references_classified,
            summary.rewrites_applied,
        )
        return summary

    def _finish(self, summary: RunSummary) -> None:
        try:
            self._store.finish_run(summary)
        except StoreError as exc:
            logger.error("Could not record summary of run %s: %s", summary.run_id, exc)

    # ------------------------------------------------------------------
    # Per-repository pipeline
    # ------------------------------------------------------------------

    async def _inspect_repository(
        self,
        fetcher: RepositoryFetcher,
        repository: Repository,
        run_id: str,
        tally: _RepositoryTally,
        *,
        remediate: bool,
        full: bool,
    ) -> None:
        outcome = await fetcher.retrieve(repository, self._path_globs)
        if not outcome.ok:
            tally.failure = RepositoryFailure(
                repository=repository.full_name,
                kind=outcome.failure_kind.value,
                message=outcome.error,
            )
            return

        reconciled: list[ReconcileResult] = []
        for file in outcome.files:
            parsed = self._parser.parse(file)
            if parsed.error is not None:
                tally.files_with_parse_errors += 1
            else:
                tally.files_parsed += 1
            states = [
                classify_reference(ref, self._policy, self._registry) for ref in parsed.references
            ]
            for state in states:
                tally.by_state[state] += 1

            await self._record_file(file, parsed.references, states, run_id, tally, full=full)

            if remediate and ValidState.NON_STANDARD in states:
                try:
                    reconciled.append(self._reconciler.reconcile(file, parsed.references, states))
                except ReconcileConflict as exc:
                    logger.warning("Not rewriting %s:%s: %s", file.repository, file.path, exc)
                    tally.reconcile_conflicts += 1
                    tally.rewrites_skipped += states.count(ValidState.NON_STANDARD)

        if reconciled:
            await self._write(repository, reconciled, tally)
        tally.succeeded = True

    async def _record_file(
        self,
        file: PipelineFile,
        references: Sequence[TaskReference],
        states: Sequence[ValidState],
        run_id: str,
        tally: _RepositoryTally,
        *,
        full: bool,
    ) -> None:
        digest = content_digest(file.content)
        if not full and await asyncio.to_thread(
            self._store.file_unchanged, file.repository, file.path, digest, self._policy_digest
        ):
            tally.files_unchanged += 1
            return

        failed = 0
        for ref, state in zip(references, states):
            record = InspectionRecord(
                run_id=run_id,
                repository=file.repository,
                file_path=file.path,
                action_type=ref.action_type,
                line=ref.location.line,
                column=ref.location.column,
                declared_version=ref.declared_version,
                required_version=self._policy.required_version(ref.action_type),
                valid_state=state,
            )
            try:
                await asyncio.to_thread(self._store.record, record)
            except StoreError as exc:
                failed += 1
                logger.error(
                    "Dropped record for %s:%s line %d: %s",
                    file.repository,
                    file.path,
                    ref.location.line,
                    exc,
                )
            else:
                tally.records_written += 1
        tally.records_failed += failed

        # only a fully recorded file may be skipped by the next run
        try:
            await asyncio.to_thread(
                self._store.mark_file_inspected,
                file.repository,
                file.path,
                digest,
                self._policy_digest,
                run_id,
                complete=not failed,
            )
        except StoreError as exc:
            logger.error("Could not mark %s:%s inspected: %s", file.repository, file.path, exc)

    async def _write(
        self,
        repository: Repository,
        results: Sequence[ReconcileResult],
        tally: _RepositoryTally,
    ) -> None:
        pending = sum(len(result.rewrites) for result in results)
        if self._dry_run or self._write_back is None:
            logger.info(
                "%s: %d rewrite(s) computed, not written (%s)",
                repository.full_name,
                pending,
                "dry run" if self._dry_run else "no write-back configured",
            )
            tally.rewrites_skipped += pending
            return
        try:
            await self._write_back.write(repository, results)
        except WriteBackError as exc:
            logger.error("Write-back failed for %s: %s", repository.full_name, exc)
            tally.rewrites_skipped += pending
        else:
            tally.rewrites_applied += pending
