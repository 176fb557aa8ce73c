"""Gavin: audit and standardise pipeline task versions across repositories.

Inspects the CI pipeline files of many repositories, classifies every task
reference against an organization-wide standard version, records the
results in an append-only SQLite store and optionally rewrites
non-standard versions:
  - Sparse, shallow git retrieval with bounded concurrency
  - Pluggable action shapes (generic ``task: Name@N`` and GitVersion ``versionSpec``)
  - Four-way classification: standard, non-standard, unparseable, not applicable
  - Hash-sealed inspection history with incremental re-runs
  - Byte-preserving reconciliation staged for an external commit step
"""

__version__ = "0.2.0"
__description__ = "Pipeline task version inspection and reconciliation"

from gavin.core.engine import InspectionEngine
from gavin.cli.app import app as cli

__all__ = ["InspectionEngine", "cli", "__version__"]
