"""Canonical hashing helpers for record seals and incremental runs."""

from __future__ import annotations

import hashlib
import json
from typing import Any

from gavin.models.policy import ValidationPolicy


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes: deterministic, sorted, compact."""
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_digest(text: str) -> str:
    """Digest of a pipeline file's exact text, used to detect unchanged files."""
    return f"sha256:{sha256_hex(text.encode('utf-8'))}"


def policy_digest(policy: ValidationPolicy) -> str:
    """Digest of a policy; a changed policy invalidates incremental skips."""
    return f"sha256:{sha256_hex(canonical_json_bytes(policy.standard_versions))}"


def compute_record_hash(record_dict: dict[str, Any]) -> str:
    """Compute the sealing hash of an inspection record.

    ``record_hash`` itself is excluded so the hash can be recomputed from a
    stored record during verification.
    """
    hashable = {k: v for k, v in record_dict.items() if k != "record_hash"}
    return sha256_hex(canonical_json_bytes(hashable))
