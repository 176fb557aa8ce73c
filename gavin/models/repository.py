"""Repository and retrieved pipeline file models.

A ``Repository`` is enumerated once per run and never changes while the run
is in progress.  A ``PipelineFile`` is the raw text of one retrieved file;
it is handed by value to the parser and only kept afterwards when the
reconciler needs to rewrite it.
"""

from __future__ import annotations

from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field


class Repository(BaseModel):
    """Identifies one source repository to inspect."""

    model_config = ConfigDict(frozen=True)

    organization: str
    name: str
    url: str
    default_branch: str = "main"

    @property
    def full_name(self) -> str:
        """``organization/name``, used as the repository key in the store."""
        return f"{self.organization}/{self.name}"

    @classmethod
    def from_url(cls, url: str, default_branch: str = "main") -> Repository:
        """Build a Repository from a clone URL.

        The organization is the first path segment and the name is the last
        one with any ``.git`` suffix removed, so both GitHub style
        (``https://host/org/repo.git``) and Azure DevOps style
        (``https://dev.azure.com/org/project/_git/repo``) URLs work.

        >>> Repository.from_url("https://dev.azure.com/acme/web/_git/shop").full_name
        'acme/shop'
        """
        url = url.strip()
        parts = urlsplit(url)
        path = parts.path if parts.scheme else url.split(":", 1)[-1]
        segments = [s for s in path.split("/") if s]
        if not segments:
            raise ValueError(f"Cannot derive a repository name from {url!r}")
        name = segments[-1]
        if name.endswith(".git"):
            name = name[: -len(".git")]
        organization = segments[0] if len(segments) > 1 else "_"
        return cls(
            organization=organization,
            name=name,
            url=url,
            default_branch=default_branch,
        )


class PipelineFile(BaseModel):
    """A single retrieved pipeline file.

    ``path`` is POSIX-style and relative to the repository root.
    ``content`` is the exact text at retrieval time, newlines untouched.
    """

    model_config = ConfigDict(frozen=True)

    repository: str  # Repository.full_name
    path: str
    content: str = Field(repr=False)
