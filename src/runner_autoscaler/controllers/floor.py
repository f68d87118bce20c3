"""
Minimum replica resolution.

Validates an autoscaling policy against its scale target and derives the
replica floor, the optional ceiling and the manual override. Runs before any
provider call so that configuration defects fail fast.
"""

from datetime import datetime, timezone
from typing import NamedTuple, Optional

from ..errors import InternalInvariantError, PolicyValidationError
from ..models.scaling import AutoscalingPolicy, MetricSpec, ScaleTarget, TargetScope
from ..utils.security import SecurityError, validate_label

DEFAULT_MIN_REPLICAS = 1

ORGANIZATION_REPOSITORIES_REQUIRED = (
    "validating autoscaling metrics: spec.autoscaling.metrics[].repositoryNames is required "
    "and must have one or more entries for organizational runner deployment"
)


class ReplicaBounds(NamedTuple):
    min_replicas: int
    max_replicas: Optional[int]
    fixed: Optional[int]


def select_metric(policy: AutoscalingPolicy) -> MetricSpec:
    """
    Return the metric the policy scales on.

    A policy without metrics scales on queued and in-progress workflow runs.
    Only the first metric is used.

    Raises:
        PolicyValidationError: If the metric kind is not supported
    """
    if not policy.metrics:
        return MetricSpec()

    metric = policy.metrics[0]
    if metric.metric_type is None:
        raise PolicyValidationError(
            f"validating autoscaling metrics: unsupported metric type {metric.type!r}"
        )
    return metric


def resolve_floor(policy: AutoscalingPolicy,
                  target: ScaleTarget,
                  now: Optional[datetime] = None) -> ReplicaBounds:
    """
    Resolve the replica bounds for a scale target.

    Args:
        policy: Autoscaling policy attached to the target
        target: Fleet being scaled
        now: Evaluation time for scheduled overrides

    Returns:
        Minimum replicas, optional maximum replicas and optional fixed count

    Raises:
        PolicyValidationError: If the policy does not fit the target's scope
        InternalInvariantError: If the resolved maximum is below the minimum
    """
    try:
        metric = select_metric(policy)
        _validate_scope(metric, target)
    except PolicyValidationError as e:
        e.target = target.name
        raise

    if policy.min_replicas is not None:
        min_replicas = policy.min_replicas
    elif target.fixed is None:
        min_replicas = DEFAULT_MIN_REPLICAS
    else:
        min_replicas = 0

    now = now or datetime.now(timezone.utc)
    for override in policy.scheduled_overrides:
        if override.is_active(now):
            min_replicas = override.min_replicas
            break

    max_replicas = policy.max_replicas
    if max_replicas is not None and max_replicas < min_replicas:
        raise InternalInvariantError(
            f"resolved maxReplicas {max_replicas} is below minReplicas {min_replicas}",
            target=target.name,
        )

    return ReplicaBounds(min_replicas, max_replicas, target.fixed)


def _validate_scope(metric: MetricSpec, target: ScaleTarget) -> None:
    for label in target.labels:
        try:
            validate_label(label)
        except SecurityError as e:
            raise PolicyValidationError(f"validating runner labels: {e}") from e

    if target.scope != TargetScope.ORGANIZATION:
        return

    if not metric.repository_names:
        raise PolicyValidationError(ORGANIZATION_REPOSITORIES_REQUIRED)

    if target.repositories and set(target.repositories) != set(metric.repository_names):
        raise PolicyValidationError(
            "validating autoscaling metrics: spec.autoscaling.metrics[].repositoryNames "
            f"{sorted(metric.repository_names)} does not match the repositories "
            f"{sorted(target.repositories)} of organizational runner deployment {target.name}"
        )
