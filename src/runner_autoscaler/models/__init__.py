"""
Data models for the runner autoscaler.
"""

from .scaling import (
    AutoscalingPolicy,
    MetricSpec,
    MetricType,
    QueueSnapshot,
    RunStatusFilter,
    ScaleHistory,
    ScaleTarget,
    ScheduledOverride,
    TargetScope,
    WorkflowJob,
    WorkflowRun,
    WorkflowRunList,
    WorkflowStatus,
)

__all__ = [
    "AutoscalingPolicy",
    "MetricSpec",
    "MetricType",
    "QueueSnapshot",
    "RunStatusFilter",
    "ScaleHistory",
    "ScaleTarget",
    "ScheduledOverride",
    "TargetScope",
    "WorkflowJob",
    "WorkflowRun",
    "WorkflowRunList",
    "WorkflowStatus",
]
