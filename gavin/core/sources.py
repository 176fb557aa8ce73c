"""Repository sources: retrieve pipeline files without the full tree.

A ``RepositorySource`` is the narrow interface the fetcher depends on:
``fetch(repository, path_globs) -> list[PipelineFile]``, raising
``RetrievalError`` on failure.  ``GitSparseSource`` implements it with a
blobless, shallow, sparse clone into a scoped temporary checkout that is
deleted on every exit path, including cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import shutil
import tempfile
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from enum import Enum
from fnmatch import fnmatch
from pathlib import Path
from typing import Protocol, runtime_checkable
from urllib.parse import quote, urlsplit, urlunsplit

from gavin.models.repository import PipelineFile, Repository

logger = logging.getLogger(__name__)

DEFAULT_PIPELINE_GLOBS: tuple[str, ...] = (
    "*pipeline*.yml",
    "*pipeline*.yaml",
    "**/*pipeline*/**/*.yml",
    "**/*pipeline*/**/*.yaml",
)


class RetrievalFailureKind(str, Enum):
    """Why a repository could not be retrieved."""

    NETWORK = "network"
    AUTHENTICATION = "authentication"
    NOT_FOUND = "not_found"
    NO_MATCHING_FILES = "no_matching_files"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"


class RetrievalError(RuntimeError):
    """Raised when one repository's retrieval fails."""

    def __init__(self, repository: str, kind: RetrievalFailureKind, message: str = "") -> None:
        super().__init__(f"{repository}: {kind.value}{': ' + message if message else ''}")
        self.repository = repository
        self.kind = kind
        self.message = message


@runtime_checkable
class RepositorySource(Protocol):
    """Protocol for repository retrieval backends."""

    async def fetch(
        self, repository: Repository, path_globs: Sequence[str]
    ) -> list[PipelineFile]:
        """Return the files of *repository* matching *path_globs*.

        Raises
        ------
        RetrievalError
            On network, authentication or not-found failures, or when no
            file matches.
        """
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def matches_globs(path: str, path_globs: Sequence[str]) -> bool:
    """Match a POSIX relative path; ``*`` may cross directory boundaries."""
    for pattern in path_globs:
        if fnmatch(path, pattern):
            return True
        if pattern.startswith("**/") and fnmatch(path, pattern[3:]):
            return True
    return False


_AUTH_MARKERS = (
    "authentication failed",
    "could not read username",
    "could not read password",
    "terminal prompts disabled",
    "permission denied",
    "access denied",
    "returned error: 403",
    "returned error: 401",
)
_NOT_FOUND_MARKERS = (
    "not found",
    "does not exist",
    "does not appear to be a git repository",
    "could not find remote branch",
    "returned error: 404",
)


def classify_git_failure(stderr: str) -> RetrievalFailureKind:
    lowered = stderr.lower()
    if any(marker in lowered for marker in _AUTH_MARKERS):
        return RetrievalFailureKind.AUTHENTICATION
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return RetrievalFailureKind.NOT_FOUND
    return RetrievalFailureKind.NETWORK


_URL_CREDENTIALS = re.compile(r"(?P<scheme>[a-z][a-z0-9+.\-]*://)[^/@\s]+@", re.IGNORECASE)


def redact(text: str, *secrets: str | None) -> str:
    """Strip URL credentials and any known secret from *text*."""
    text = _URL_CREDENTIALS.sub(r"\g<scheme>***@", text)
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


_GLOBAL_OPTIONS_WITH_VALUE = frozenset({"-C", "-c", "--git-dir", "--work-tree"})


def git_subcommand(args: Sequence[str]) -> str:
    """Name the git subcommand in *args*, skipping global options."""
    skip = False
    for arg in args:
        if skip:
            skip = False
        elif arg in _GLOBAL_OPTIONS_WITH_VALUE:
            skip = True
        elif not arg.startswith("-"):
            return arg
    return "command"


def read_pipeline_files(
    root: Path, repository: str, path_globs: Sequence[str]
) -> list[PipelineFile]:
    """Read every matching file under *root*, newlines preserved."""
    files: list[PipelineFile] = []
    for candidate in sorted(root.rglob("*")):
        if ".git" in candidate.relative_to(root).parts or not candidate.is_file():
            continue
        relative = candidate.relative_to(root).as_posix()
        if not matches_globs(relative, path_globs):
            continue
        with open(candidate, encoding="utf-8", errors="replace", newline="") as handle:
            files.append(PipelineFile(repository=repository, path=relative, content=handle.read()))
    return files


@asynccontextmanager
async def checkout_workspace(
    repository: Repository, root: Path | None = None
) -> AsyncIterator[Path]:
    """Yield a fresh temporary directory that is always removed afterwards.

    Removal is synchronous so it also completes when the surrounding task is
    being cancelled.
    """
    if root is not None:
        root.mkdir(parents=True, exist_ok=True)
    workdir = Path(tempfile.mkdtemp(prefix=f"gavin-{repository.name}-", dir=root))
    logger.debug("Created checkout %s for %s", workdir, repository.full_name)
    try:
        yield workdir
    finally:
        shutil.rmtree(workdir, ignore_errors=True)
        logger.debug("Removed checkout %s", workdir)


# ---------------------------------------------------------------------------
# Git implementation
# ---------------------------------------------------------------------------


class GitSparseSource:
    """Retrieves pipeline files with a blobless, shallow, sparse git clone.

    Parameters
    ----------
    username, token:
        Optional HTTPS credentials injected into clone URLs.  Never logged.
    checkout_root:
        Parent directory for temporary checkouts.  System temp when ``None``.
    timeout:
        Seconds allowed for each git command.
    """

    def __init__(
        self,
        *,
        username: str | None = None,
        token: str | None = None,
        checkout_root: Path | None = None,
        timeout: float = 120.0,
        git_executable: str = "git",
    ) -> None:
        self._username = username
        self._token = token
        self._checkout_root = checkout_root
        self._timeout = timeout
        self._git = git_executable

    def authenticated_url(self, repository: Repository) -> str:
        """Return the clone URL with credentials for HTTPS remotes."""
        parts = urlsplit(repository.url)
        if parts.scheme not in ("http", "https") or not self._token:
            return repository.url
        host = parts.netloc.rsplit("@", 1)[-1]
        user = quote(self._username or "git", safe="")
        netloc = f"{user}:{quote(self._token, safe='')}@{host}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    async def fetch(
        self, repository: Repository, path_globs: Sequence[str]
    ) -> list[PipelineFile]:
        async with checkout_workspace(repository, self._checkout_root) as workdir:
            target = workdir / "checkout"
            await self._run(
                repository,
                "clone",
                "--filter=blob:none",
                "--no-checkout",
                "--depth",
                "1",
                "--branch",
                repository.default_branch,
                self.authenticated_url(repository),
                str(target),
            )
            await self._run(
                repository,
                "-C",
                str(target),
                "sparse-checkout",
                "set",
                "--no-cone",
                *path_globs,
            )
            await self._run(repository, "-C", str(target), "checkout", repository.default_branch)
            files = await asyncio.to_thread(
                read_pipeline_files, target, repository.full_name, path_globs
            )

        if not files:
            raise RetrievalError(repository.full_name, RetrievalFailureKind.NO_MATCHING_FILES)
        logger.info("Retrieved %d pipeline file(s) from %s", len(files), repository.full_name)
        return files

    async def check_reachable(self, repository: Repository) -> None:
        """Check the remote is reachable with the configured credentials."""
        await self._run(repository, "ls-remote", "--heads", self.authenticated_url(repository))

    async def _run(self, repository: Repository, *args: str) -> str:
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        try:
            process = await asyncio.create_subprocess_exec(
                self._git,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as exc:
            raise RetrievalError(
                repository.full_name, RetrievalFailureKind.NETWORK, f"cannot run git: {exc}"
            ) from exc

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            raise RetrievalError(
                repository.full_name,
                RetrievalFailureKind.TIMEOUT,
                f"git {git_subcommand(args)} timed out after {self._timeout:g}s",
            ) from None
        except asyncio.CancelledError:
            process.kill()
            await process.wait()
            raise

        if process.returncode != 0:
            message = redact(stderr.decode("utf-8", errors="replace").strip(), self._token)
            raise RetrievalError(repository.full_name, classify_git_failure(message), message)
        return stdout.decode("utf-8", errors="replace")
