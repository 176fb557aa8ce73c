"""Gavin data models: all Pydantic v2, all frozen (immutable)."""

from gavin.models.policy import ValidationPolicy, normalize_action_type
from gavin.models.records import InspectionQuery, InspectionRecord, TaskUsage
from gavin.models.repository import PipelineFile, Repository
from gavin.models.summary import RepositoryFailure, RunSummary
from gavin.models.tasks import TaskLocation, TaskReference, ValidState

__all__ = [
    # repository
    "Repository",
    "PipelineFile",
    # tasks
    "TaskLocation",
    "TaskReference",
    "ValidState",
    # policy
    "ValidationPolicy",
    "normalize_action_type",
    # records
    "InspectionRecord",
    "InspectionQuery",
    "TaskUsage",
    # summary
    "RepositoryFailure",
    "RunSummary",
]
