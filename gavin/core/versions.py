"""Version string normalisation.

Task majors (``@3``) and tool versions (``5.2.0``) are written with varying
precision, so ``"5"``, ``"5.0"`` and ``"5.0.0"`` are treated as equal.
Values that are not dotted numbers fall back to exact comparison.
"""

from __future__ import annotations

import re

_NUMERIC = re.compile(r"^v?(\d+(?:\.\d+)*)$", re.IGNORECASE)


def normalize_version(value: str) -> str:
    """Return a canonical form of *value* for equality checks.

    >>> normalize_version("5")
    '5.0.0'
    >>> normalize_version("v5.2")
    '5.2.0'
    >>> normalize_version("5.x")
    '5.x'
    """
    value = value.strip()
    match = _NUMERIC.match(value)
    if not match:
        return value
    parts = [str(int(p)) for p in match.group(1).split(".")]
    while len(parts) < 3:
        parts.append("0")
    return ".".join(parts)


def versions_equal(left: str, right: str) -> bool:
    return normalize_version(left) == normalize_version(right)
