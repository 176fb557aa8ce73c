"""Validity classifier: maps a task reference to exactly one ValidState.

Decision table (branches are disjoint and evaluated in order):

1. No policy entry for the action type           -> NOT_APPLICABLE
2. Version absent or not in the shape's syntax   -> UNPARSEABLE
3. Version equals the policy's required version  -> STANDARD
4. Otherwise                                     -> NON_STANDARD

``NOT_APPLICABLE`` is decided only from the policy and ``UNPARSEABLE`` only
from the declared value, so "no rule configured" can never be reported as
"value malformed" or the other way round.
"""

from __future__ import annotations

from gavin.core.shapes import DEFAULT_REGISTRY, ClassificationAmbiguity, ShapeRegistry
from gavin.core.versions import versions_equal
from gavin.models.policy import ValidationPolicy
from gavin.models.tasks import TaskReference, ValidState

__all__ = ["ClassificationAmbiguity", "check_policy", "classify", "classify_reference"]


def classify(
    action_type: str,
    declared_version: str | None,
    policy: ValidationPolicy,
    registry: ShapeRegistry = DEFAULT_REGISTRY,
) -> ValidState:
    """Classify one declared version against *policy*.

    Pure and total: the same inputs always give the same state and no input
    raises.
    """
    required = policy.required_version(action_type)
    if required is None:
        return ValidState.NOT_APPLICABLE

    if declared_version is None:
        return ValidState.UNPARSEABLE
    declared = declared_version.strip()
    shape = registry.shape_for(action_type)
    if not declared or shape is None or not shape.is_valid_version(declared):
        return ValidState.UNPARSEABLE

    if versions_equal(declared, required):
        return ValidState.STANDARD
    return ValidState.NON_STANDARD


def classify_reference(
    reference: TaskReference,
    policy: ValidationPolicy,
    registry: ShapeRegistry = DEFAULT_REGISTRY,
) -> ValidState:
    return classify(reference.action_type, reference.declared_version, policy, registry)


def check_policy(policy: ValidationPolicy, registry: ShapeRegistry = DEFAULT_REGISTRY) -> None:
    """Reject standard versions their shape would not parse back.

    A rewrite writes the standard version verbatim, so a value outside the
    shape's syntax would turn a ``NON_STANDARD`` reference into an
    ``UNPARSEABLE`` one.

    Raises
    ------
    ValueError
        Naming every action type whose standard version is invalid.
    """
    invalid = []
    for action_type in sorted(policy.applicable):
        version = policy.standard_versions[action_type]
        shape = registry.shape_for(action_type)
        if shape is None or not shape.is_valid_version(version.strip()):
            invalid.append(f"{action_type}={version!r}")
    if invalid:
        raise ValueError("Standard version not valid for its action shape: " + ", ".join(invalid))
