"""Validation policy: the standard version required per action type."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


def normalize_action_type(action_type: str) -> str:
    """Action types compare case-insensitively (``PowerShell`` == ``powershell``)."""
    return action_type.strip().lower()


class ValidationPolicy(BaseModel):
    """Process-wide, read-only standard version policy.

    An action type is *applicable* when it has an entry in
    ``standard_versions``; every other action type is not applicable.
    """

    model_config = ConfigDict(frozen=True)

    standard_versions: dict[str, str] = Field(default_factory=dict)

    @field_validator("standard_versions", mode="before")
    @classmethod
    def _normalize_keys(cls, value: object) -> object:
        if not isinstance(value, dict):
            return value
        normalized: dict[str, str] = {}
        for key, version in value.items():
            if not isinstance(key, str) or not key.strip():
                raise ValueError(f"invalid action type {key!r}")
            if version is None:
                raise ValueError(f"no standard version given for {key!r}")
            normalized[normalize_action_type(key)] = str(version).strip()
        return normalized

    @property
    def applicable(self) -> frozenset[str]:
        return frozenset(self.standard_versions)

    def is_applicable(self, action_type: str) -> bool:
        return normalize_action_type(action_type) in self.standard_versions

    def required_version(self, action_type: str) -> str | None:
        """Return the standard version for *action_type*, or ``None``."""
        return self.standard_versions.get(normalize_action_type(action_type))
