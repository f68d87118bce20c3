"""
Replica planning with scale-down hysteresis.

Scale-out is committed immediately. Scale-down is held back until the
cooldown, measured from the most recent scale-out, has elapsed.
"""

from datetime import datetime, timedelta
from enum import Enum
from typing import NamedTuple, Optional

from ..errors import InternalInvariantError
from ..models.scaling import AutoscalingPolicy, ScaleHistory, ScaleTarget, as_utc


class ScaleReason(str, Enum):
    """Why a pass settled on its replica count."""

    INITIAL = "initial"
    SCALE_OUT = "scale_out"
    STEADY = "steady"
    SCALE_DOWN = "scale_down"
    COOLDOWN = "cooldown"
    FIXED = "fixed"


class PlanResult(NamedTuple):
    replicas: int
    history: ScaleHistory
    reason: ScaleReason


def clamp(value: int, min_replicas: int, max_replicas: Optional[int]) -> int:
    """Clamp a replica count into [min_replicas, max_replicas]."""
    if max_replicas is not None and max_replicas < min_replicas:
        raise InternalInvariantError(
            f"maxReplicas {max_replicas} is below minReplicas {min_replicas}"
        )
    value = max(value, min_replicas)
    if max_replicas is not None:
        value = min(value, max_replicas)
    return value


def plan(now: datetime,
         target: ScaleTarget,
         policy: AutoscalingPolicy,
         history: Optional[ScaleHistory],
         raw_demand: int,
         min_replicas: int,
         max_replicas: Optional[int],
         default_scale_down_delay: timedelta) -> PlanResult:
    """
    Decide the replica count for this pass and the history to store.

    Args:
        now: Time of the pass
        target: Fleet being planned
        policy: Policy supplying the per-fleet cooldown, if any
        history: History stored by the previous pass, None on the first pass
        raw_demand: Demand computed for this pass
        min_replicas: Resolved floor
        max_replicas: Resolved ceiling, None when unbounded
        default_scale_down_delay: Cooldown used when the policy sets none

    Returns:
        Final replicas, new history and the reason for the decision

    Raises:
        InternalInvariantError: On negative demand or a ceiling below the floor
    """
    now = as_utc(now)
    if raw_demand < 0:
        raise InternalInvariantError(f"negative demand {raw_demand}", target=target.name)
    try:
        desired = clamp(raw_demand, min_replicas, max_replicas)
    except InternalInvariantError as e:
        e.target = target.name
        raise

    if history is None:
        return PlanResult(
            desired,
            ScaleHistory(
                committed_replicas=desired,
                last_scale_out_time=now if desired > 0 else None,
            ),
            ScaleReason.INITIAL,
        )

    previous = history.committed_replicas
    if desired >= previous:
        reason = ScaleReason.SCALE_OUT if desired > previous else ScaleReason.STEADY
        return PlanResult(
            desired,
            ScaleHistory(committed_replicas=desired, last_scale_out_time=now),
            reason,
        )

    delay = policy.scale_down_delay(default_scale_down_delay)
    last_scale_out = history.last_scale_out_time
    if last_scale_out is not None and now - last_scale_out < delay:
        # The held count still obeys a ceiling lowered since the last pass
        held = clamp(previous, min_replicas, max_replicas)
        if held != previous:
            history = ScaleHistory(committed_replicas=held, last_scale_out_time=last_scale_out)
        return PlanResult(held, history, ScaleReason.COOLDOWN)

    return PlanResult(
        desired,
        ScaleHistory(committed_replicas=desired, last_scale_out_time=last_scale_out),
        ScaleReason.SCALE_DOWN,
    )


def plan_fixed(now: datetime,
               history: Optional[ScaleHistory],
               fixed: int,
               min_replicas: int,
               max_replicas: Optional[int]) -> PlanResult:
    """
    Pin the fleet to a manually fixed replica count.

    The fixed count bypasses the cooldown but stays within the bounds.
    """
    now = as_utc(now)
    desired = clamp(fixed, min_replicas, max_replicas)
    previous = history.committed_replicas if history is not None else 0
    last_scale_out = history.last_scale_out_time if history is not None else None
    if desired > previous:
        last_scale_out = now

    return PlanResult(
        desired,
        ScaleHistory(committed_replicas=desired, last_scale_out_time=last_scale_out),
        ScaleReason.FIXED,
    )
