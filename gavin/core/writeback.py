"""Write-back collaborators: persist reconciled pipeline files.

Layout of the staging implementation:
    {root}/{organization}/{name}/{file path}
    {root}/{organization}/{name}/.gavin-rewrites.json

The manifest lists every rewrite so an external commit/push step can build
its commit message.  Committing and pushing are not done here.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol, runtime_checkable

from gavin.core.hasher import canonical_json_bytes
from gavin.core.reconciler import ReconcileResult
from gavin.models.repository import Repository

logger = logging.getLogger(__name__)

MANIFEST_NAME = ".gavin-rewrites.json"


class WriteBackError(RuntimeError):
    """Raised when reconciled content cannot be persisted."""


@runtime_checkable
class WriteBack(Protocol):
    """Protocol for write-back backends."""

    async def write(self, repository: Repository, results: Sequence[ReconcileResult]) -> int:
        """Persist changed files of one repository; return how many were written."""
        ...


class StagingDirectoryWriteBack:
    """Writes reconciled files into a local staging tree.

    Parameters
    ----------
    root:
        Staging root.  Defaults to ``.gavin/staged``.
    """

    def __init__(self, root: Path | str | None = None) -> None:
        self._root = Path(root) if root else Path(".gavin/staged")

    @property
    def root(self) -> Path:
        return self._root

    def repository_dir(self, repository: Repository) -> Path:
        return self._root / repository.organization / repository.name

    async def write(self, repository: Repository, results: Sequence[ReconcileResult]) -> int:
        changed = [result for result in results if result.changed]
        if not changed:
            return 0
        return await asyncio.to_thread(self._write_sync, repository, changed)

    def _write_sync(self, repository: Repository, results: Sequence[ReconcileResult]) -> int:
        base = self.repository_dir(repository).resolve()
        manifest: list[dict] = []
        try:
            for result in results:
                target = (base / result.path).resolve()
                if not target.is_relative_to(base):
                    raise WriteBackError(f"{result.path} escapes the staging directory")
                target.parent.mkdir(parents=True, exist_ok=True)
                with open(target, "w", encoding="utf-8", newline="") as handle:
                    handle.write(result.content)
                manifest.append(
                    {
                        "path": result.path,
                        "rewrites": [rewrite.model_dump(mode="json") for rewrite in result.rewrites],
                    }
                )
                logger.debug("Staged %s:%s at %s", repository.full_name, result.path, target)
            (base / MANIFEST_NAME).write_bytes(
                canonical_json_bytes({"repository": repository.full_name, "files": manifest})
            )
        except OSError as exc:
            raise WriteBackError(f"cannot stage files for {repository.full_name}: {exc}") from exc

        logger.info("Staged %d rewritten file(s) for %s", len(results), repository.full_name)
        return len(results)
