"""
Runner autoscaler controllers.

This package contains the floor resolver, the demand calculator, the replica
planner, and the autoscaler that composes them into a reconciliation pass.
"""

from .autoscaler import HorizontalRunnerAutoscaler, ReconcileRequest
from .demand import DemandCalculator, DemandResult, compute_demand, polled_repositories
from .floor import ReplicaBounds, resolve_floor, select_metric
from .planner import PlanResult, ScaleReason, clamp, plan, plan_fixed

__all__ = [
    "DemandCalculator",
    "DemandResult",
    "HorizontalRunnerAutoscaler",
    "PlanResult",
    "ReconcileRequest",
    "ReplicaBounds",
    "ScaleReason",
    "clamp",
    "compute_demand",
    "plan",
    "plan_fixed",
    "polled_repositories",
    "resolve_floor",
    "select_metric",
]
