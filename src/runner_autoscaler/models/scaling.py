"""
Scaling models for the runner autoscaler.

This module defines the scale target, autoscaling policy, persisted scale
history, and the workflow queue snapshot the demand calculator works from.
All models are pydantic models so that configuration read from the cluster
or from provider responses is validated once at the boundary.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    NonNegativeInt,
    field_validator,
    model_validator,
)


SELF_HOSTED_LABEL = "self-hosted"

REPOSITORY_PATTERN = r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$"
OWNER_PATTERN = r"^[A-Za-z0-9_.-]+$"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps as UTC so that all comparisons are aware."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class WorkflowStatus(str, Enum):
    """
    Status of a workflow run or job as reported by the CI provider.

    Statuses the autoscaler does not act on (waiting, requested, pending...)
    collapse into OTHER.
    """

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "WorkflowStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER

    @property
    def is_pending(self) -> bool:
        """True for statuses that need a runner now."""
        return self in (WorkflowStatus.QUEUED, WorkflowStatus.IN_PROGRESS)


class RunStatusFilter(str, Enum):
    """Status filter accepted by the provider's workflow run listing."""

    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    ALL = "all"


class TargetScope(str, Enum):
    """Scope a runner fleet is registered at."""

    REPOSITORY = "repository"
    ORGANIZATION = "organization"


class MetricType(str, Enum):
    """Metric kinds an autoscaling policy can reference."""

    TOTAL_NUMBER_OF_QUEUED_AND_IN_PROGRESS_WORKFLOW_RUNS = (
        "TotalNumberOfQueuedAndInProgressWorkflowRuns"
    )


class WorkflowRun(BaseModel):
    """A workflow run in the provider's queue."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: int = Field(default=0, description="Run ID, 0 when the provider omitted it")
    status: WorkflowStatus = Field(default=WorkflowStatus.OTHER)
    repository: str = Field(default="", description="Repository the run belongs to")

    @field_validator("id", mode="before")
    @classmethod
    def default_missing_id(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> WorkflowStatus:
        return WorkflowStatus.parse(v)


class WorkflowJob(BaseModel):
    """A job belonging to a workflow run, with its runner label requirements."""

    model_config = ConfigDict(frozen=True)

    id: int = 0
    run_id: int = 0
    status: WorkflowStatus = WorkflowStatus.OTHER
    labels: FrozenSet[str] = Field(default_factory=frozenset)

    @field_validator("id", "run_id", mode="before")
    @classmethod
    def default_missing_ids(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("status", mode="before")
    @classmethod
    def parse_status(cls, v: Any) -> WorkflowStatus:
        return WorkflowStatus.parse(v)

    @field_validator("labels", mode="before")
    @classmethod
    def default_missing_labels(cls, v: Any) -> Any:
        return frozenset() if v is None else v


class WorkflowRunList(BaseModel):
    """One page set of a workflow run listing."""

    total_count: NonNegativeInt = 0
    runs: List[WorkflowRun] = Field(default_factory=list)


class QueueSnapshot(BaseModel):
    """
    Queue state for one scale target, fetched fresh on every pass.

    `jobs` is keyed by run ID and only holds entries for runs whose ID is
    known and non-zero.
    """

    queued_total: NonNegativeInt = 0
    in_progress_total: NonNegativeInt = 0
    runs: List[WorkflowRun] = Field(default_factory=list)
    jobs: Dict[int, List[WorkflowJob]] = Field(default_factory=dict)

    @property
    def is_legacy(self) -> bool:
        """True when no run carries job linkage information."""
        return all(run.id == 0 for run in self.runs)

    def jobs_for(self, run: WorkflowRun) -> List[WorkflowJob]:
        return self.jobs.get(run.id, [])


class ScaleTarget(BaseModel):
    """
    A runner fleet: one repository, or one organization with member repositories.

    The repository list of an organization fleet may be empty here; it is
    checked against the policy's metric when the floor is resolved.
    """

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Fleet identity and history key")
    repository: Optional[str] = Field(
        default=None,
        pattern=REPOSITORY_PATTERN,
        description="owner/repo for repository runners",
    )
    organization: Optional[str] = Field(
        default=None,
        pattern=OWNER_PATTERN,
        description="Organization for organizational runners",
    )
    repositories: List[str] = Field(
        default_factory=list,
        description="Member repositories polled for an organization fleet",
    )
    labels: List[str] = Field(
        default_factory=list,
        description="Capability labels the fleet's runners are registered with",
    )
    fixed: Optional[NonNegativeInt] = Field(
        default=None,
        description="Manually pinned replica count",
    )

    @model_validator(mode="after")
    def validate_scope(self) -> "ScaleTarget":
        if (self.repository is None) == (self.organization is None):
            raise ValueError("exactly one of repository or organization must be set")
        if self.repository is not None and self.repositories:
            raise ValueError("repositories can only be listed for organization targets")
        if self.repository is not None and ".." in self.repository:
            raise ValueError("repository must not contain '..'")
        return self

    @property
    def scope(self) -> TargetScope:
        if self.organization is not None:
            return TargetScope.ORGANIZATION
        return TargetScope.REPOSITORY


class MetricSpec(BaseModel):
    """
    A metric an autoscaling policy scales on.

    `type` is the variant tag. It is kept as a plain string so that an
    unsupported kind surfaces as a policy validation error during floor
    resolution instead of failing model construction.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    type: str = Field(
        default=MetricType.TOTAL_NUMBER_OF_QUEUED_AND_IN_PROGRESS_WORKFLOW_RUNS.value,
    )
    repository_names: List[str] = Field(
        default_factory=list,
        alias="repositoryNames",
        description="Repositories to poll for organizational runners",
    )

    @property
    def metric_type(self) -> Optional[MetricType]:
        try:
            return MetricType(self.type)
        except ValueError:
            return None


class ScheduledOverride(BaseModel):
    """Replaces the policy's minimum replicas during a time window."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    start_time: datetime = Field(..., alias="startTime")
    end_time: datetime = Field(..., alias="endTime")
    min_replicas: NonNegativeInt = Field(..., alias="minReplicas")

    @field_validator("start_time", "end_time")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def validate_window(self) -> "ScheduledOverride":
        if self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self

    def is_active(self, now: datetime) -> bool:
        return self.start_time <= as_utc(now) < self.end_time


class AutoscalingPolicy(BaseModel):
    """Floor, ceiling, metrics and cooldown for one fleet."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    min_replicas: Optional[NonNegativeInt] = Field(default=None, alias="minReplicas")
    max_replicas: Optional[NonNegativeInt] = Field(default=None, alias="maxReplicas")
    metrics: List[MetricSpec] = Field(default_factory=list)
    scale_down_delay_seconds_after_scale_out: Optional[NonNegativeInt] = Field(
        default=None,
        alias="scaleDownDelaySecondsAfterScaleOut",
    )
    scheduled_overrides: List[ScheduledOverride] = Field(
        default_factory=list,
        alias="scheduledOverrides",
    )

    @model_validator(mode="after")
    def validate_bounds(self) -> "AutoscalingPolicy":
        if (self.min_replicas is not None and self.max_replicas is not None
                and self.min_replicas > self.max_replicas):
            raise ValueError("minReplicas must not exceed maxReplicas")
        return self

    def scale_down_delay(self, default: timedelta) -> timedelta:
        """Cooldown for this policy, falling back to the given default."""
        if self.scale_down_delay_seconds_after_scale_out is None:
            return default
        return timedelta(seconds=self.scale_down_delay_seconds_after_scale_out)


class ScaleHistory(BaseModel):
    """
    Committed replica count of the previous pass and the last scale-out time.

    The caller stores the record form in the fleet's status between passes.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    committed_replicas: NonNegativeInt = Field(..., alias="desiredReplicas")
    last_scale_out_time: Optional[datetime] = Field(
        default=None,
        alias="lastSuccessfulScaleOutTime",
    )

    @field_validator("last_scale_out_time")
    @classmethod
    def ensure_aware(cls, v: Optional[datetime]) -> Optional[datetime]:
        return as_utc(v)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: Optional[Dict[str, Any]]) -> Optional["ScaleHistory"]:
        """Rebuild history from a status record; an empty record means no history."""
        if not record or record.get("desiredReplicas") is None:
            return None
        return cls.model_validate(record)
