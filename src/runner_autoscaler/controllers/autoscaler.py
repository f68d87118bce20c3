"""
Horizontal runner autoscaler.

This module composes floor resolution, demand calculation and replica
planning into a single reconciliation pass per scale target. The external
reconciler calls it on a timer or watch, persists the returned history in
the fleet's status, and applies the returned replica count.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, NamedTuple, Optional, Union

import httpx
import structlog
from prometheus_client import Counter, Gauge, Histogram

from ..config import AutoscalerConfiguration
from ..errors import AutoscalerError
from ..models.scaling import AutoscalingPolicy, ScaleHistory, ScaleTarget
from ..utils.github_client import GitHubActionsClient
from ..utils.provider import WorkflowProvider
from ..utils.security import RateLimiter
from .demand import DemandCalculator
from .floor import resolve_floor, select_metric
from .planner import PlanResult, plan, plan_fixed


SCALING_DECISIONS = Counter(
    "runner_autoscaler_scaling_decisions_total",
    "Total scaling decisions made",
    ["direction", "reason", "target"]
)
DESIRED_REPLICAS = Gauge(
    "runner_autoscaler_desired_replicas",
    "Replica count decided by the last successful pass",
    ["target"]
)
RAW_DEMAND = Gauge(
    "runner_autoscaler_raw_demand",
    "Unclamped replica demand computed from the workflow queue",
    ["target", "mode"]
)
RECONCILE_ERRORS = Counter(
    "runner_autoscaler_reconcile_errors_total",
    "Reconciliation passes aborted by an error",
    ["kind", "target"]
)
RECONCILE_DURATION = Histogram(
    "runner_autoscaler_reconcile_duration_seconds",
    "Duration of a reconciliation pass in seconds",
    ["target"]
)


class ReconcileRequest(NamedTuple):
    target: ScaleTarget
    policy: AutoscalingPolicy
    history: Optional[ScaleHistory] = None


class HorizontalRunnerAutoscaler:
    """
    Decides desired runner replicas for scale targets.

    Holds no per-target state: history comes in with each call and the new
    history goes out with the result. On failure nothing is returned, so the
    caller keeps the previous history.
    """

    def __init__(self,
                 provider: WorkflowProvider,
                 config: Optional[AutoscalerConfiguration] = None,
                 logger: Any = None) -> None:
        """
        Initialize the autoscaler.

        Args:
            provider: Workflow provider used to fetch queue state
            config: Autoscaler configuration, defaults applied when omitted
            logger: Structured logger instance
        """
        self.config = config or AutoscalerConfiguration()
        self.provider = provider
        self.logger = (logger or structlog.get_logger()).bind(component="runner_autoscaler")
        self.demand_calculator = DemandCalculator(provider, logger=self.logger)

        self.logger.info(
            "Runner autoscaler initialized",
            default_scale_down_delay=self.config.default_scale_down_delay_seconds,
            metrics_enabled=self.config.enable_metrics
        )

    @classmethod
    def from_configuration(cls,
                           config: AutoscalerConfiguration,
                           transport: Optional[httpx.AsyncBaseTransport] = None,
                           logger: Any = None) -> "HorizontalRunnerAutoscaler":
        """Build an autoscaler backed by the GitHub Actions API."""
        github = config.github
        client = GitHubActionsClient(
            url=github.url,
            token=github.token.get_secret_value() if github.token else None,
            timeout_seconds=github.timeout_seconds,
            per_page=github.per_page,
            max_pages=github.max_pages,
            max_concurrent_requests=config.max_concurrent_requests,
            rate_limiter=RateLimiter(max_requests=github.max_requests_per_minute, window_seconds=60),
            transport=transport,
            logger=logger,
        )
        return cls(client, config=config, logger=logger)

    async def reconcile(self,
                        target: ScaleTarget,
                        policy: AutoscalingPolicy,
                        history: Optional[ScaleHistory] = None,
                        now: Optional[datetime] = None) -> PlanResult:
        """
        Run one reconciliation pass for a scale target.

        Args:
            target: Fleet to scale
            policy: Autoscaling policy of the fleet
            history: History returned by the previous pass, None if there is none
            now: Time of the pass, defaults to the current time

        Returns:
            Desired replicas, the history to persist and the decision reason

        Raises:
            PolicyValidationError: If the policy does not fit the target
            ProviderError: If the workflow queue cannot be fetched
            InternalInvariantError: If resolved bounds are inconsistent
        """
        now = now or datetime.now(timezone.utc)
        logger = self.logger.bind(target=target.name)
        started = time.monotonic()

        try:
            bounds = resolve_floor(policy, target, now)

            if bounds.fixed is not None:
                result = plan_fixed(now, history, bounds.fixed, bounds.min_replicas, bounds.max_replicas)
            else:
                metric = select_metric(policy)
                demand = await self.demand_calculator.compute(target, metric)
                if self.config.enable_metrics:
                    RAW_DEMAND.labels(
                        target=target.name,
                        mode="job" if demand.used_job_level else "run"
                    ).set(demand.demand)

                result = plan(
                    now,
                    target,
                    policy,
                    history,
                    demand.demand,
                    bounds.min_replicas,
                    bounds.max_replicas,
                    self.config.default_scale_down_delay,
                )

        except AutoscalerError as e:
            if e.target is None:
                e.target = target.name
            logger.error("Reconciliation failed", error=str(e), kind=e.kind)
            if self.config.enable_metrics:
                RECONCILE_ERRORS.labels(kind=e.kind, target=target.name).inc()
            raise

        finally:
            if self.config.enable_metrics:
                RECONCILE_DURATION.labels(target=target.name).observe(time.monotonic() - started)

        previous = history.committed_replicas if history is not None else 0
        if result.replicas > previous:
            direction = "up"
        elif result.replicas < previous:
            direction = "down"
        else:
            direction = "none"

        if self.config.enable_metrics:
            SCALING_DECISIONS.labels(direction=direction, reason=result.reason.value, target=target.name).inc()
            DESIRED_REPLICAS.labels(target=target.name).set(result.replicas)

        logger.info(
            "Reconciled desired replicas",
            replicas=result.replicas,
            previous=previous,
            direction=direction,
            reason=result.reason.value,
            min_replicas=bounds.min_replicas,
            max_replicas=bounds.max_replicas,
            fixed=bounds.fixed
        )
        return result

    async def reconcile_all(self,
                            requests: Iterable[ReconcileRequest],
                            now: Optional[datetime] = None) -> Dict[str, Union[PlanResult, AutoscalerError]]:
        """
        Reconcile several distinct targets concurrently.

        A failing target does not affect the others; its entry holds the
        error instead of a plan.

        Raises:
            ValueError: If a target name appears more than once
        """
        requests = list(requests)
        names = [request.target.name for request in requests]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Targets must be reconciled one pass at a time: {duplicates}")

        now = now or datetime.now(timezone.utc)
        results = await asyncio.gather(
            *(self._reconcile_isolated(request, now) for request in requests)
        )
        return dict(zip(names, results))

    async def _reconcile_isolated(self,
                                  request: ReconcileRequest,
                                  now: datetime) -> Union[PlanResult, AutoscalerError]:
        try:
            return await self.reconcile(request.target, request.policy, request.history, now)
        except AutoscalerError as e:
            return e

    async def close(self) -> None:
        """Close the provider if it holds connections."""
        close = getattr(self.provider, "close", None)
        if close is not None:
            await close()
