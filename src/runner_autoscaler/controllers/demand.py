"""
Replica demand calculation.

Demand is computed from a queue snapshot in one of two modes:

- run level: when no run carries an ID, every queued or in-progress run is
  assumed to need one runner;
- job level: when run IDs are available, only queued or in-progress jobs
  whose labels the fleet can satisfy are counted, and run totals are
  ignored even if no job matches.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, List, NamedTuple, Tuple

import structlog

from ..errors import PolicyValidationError, ProviderError
from ..models.scaling import (
    MetricSpec,
    MetricType,
    QueueSnapshot,
    RunStatusFilter,
    ScaleTarget,
    TargetScope,
    WorkflowJob,
    WorkflowRun,
    WorkflowRunList,
)
from ..utils.labels import effective_labels, matches
from ..utils.provider import WorkflowProvider


class DemandResult(NamedTuple):
    demand: int
    used_job_level: bool


async def gather_or_cancel(aws: Iterable[Awaitable[Any]]) -> List[Any]:
    """
    Run awaitables concurrently and return their results in order.

    On the first failure the remaining requests are cancelled and awaited
    before the error is re-raised, so no provider call outlives the pass.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    if not tasks:
        return []

    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    for task in tasks:
        if not task.cancelled() and task.exception() is not None:
            raise task.exception()
    return [task.result() for task in tasks]


def polled_repositories(target: ScaleTarget, metric: MetricSpec) -> List[str]:
    """owner/repo names whose queues feed the target's demand."""
    if target.scope == TargetScope.REPOSITORY:
        return [target.repository]

    repositories: List[str] = []
    for name in metric.repository_names:
        full_name = f"{target.organization}/{name}"
        if full_name not in repositories:
            repositories.append(full_name)
    return repositories


def compute_demand(target: ScaleTarget, snapshot: QueueSnapshot) -> DemandResult:
    """
    Compute raw replica demand for a target from a queue snapshot.

    Args:
        target: Fleet whose effective labels jobs are matched against
        snapshot: Queue state fetched for this pass

    Returns:
        The demand and whether job-level data was used
    """
    if snapshot.is_legacy:
        return DemandResult(snapshot.queued_total + snapshot.in_progress_total, False)

    fleet_labels = effective_labels(target.labels)
    demand = 0
    for run in snapshot.runs:
        if run.id == 0 or not run.status.is_pending:
            continue
        demand += sum(
            1 for job in snapshot.jobs_for(run)
            if job.status.is_pending and matches(job.labels, fleet_labels)
        )

    return DemandResult(demand, True)


class DemandCalculator:
    """
    Fetches queue snapshots from a workflow provider and turns them into demand.

    Metric kinds are dispatched through a strategy table, so supporting a new
    kind means registering one more strategy.
    """

    def __init__(self, provider: WorkflowProvider, logger: Any = None) -> None:
        self.provider = provider
        self.logger = (logger or structlog.get_logger()).bind(component="demand_calculator")
        self._strategies: Dict[MetricType, Callable[[ScaleTarget, MetricSpec], Awaitable[DemandResult]]] = {
            MetricType.TOTAL_NUMBER_OF_QUEUED_AND_IN_PROGRESS_WORKFLOW_RUNS:
                self._queued_and_in_progress_demand,
        }

    async def compute(self, target: ScaleTarget, metric: MetricSpec) -> DemandResult:
        """
        Compute raw demand for a target using the given metric.

        Raises:
            PolicyValidationError: If no strategy handles the metric kind
            ProviderError: If the provider cannot be queried
        """
        strategy = self._strategies.get(metric.metric_type)
        if strategy is None:
            raise PolicyValidationError(
                f"validating autoscaling metrics: unsupported metric type {metric.type!r}",
                target=target.name,
            )
        return await strategy(target, metric)

    async def _queued_and_in_progress_demand(self,
                                             target: ScaleTarget,
                                             metric: MetricSpec) -> DemandResult:
        snapshot = await self.fetch_snapshot(target, metric)
        result = compute_demand(target, snapshot)

        self.logger.debug(
            "Computed demand",
            target=target.name,
            demand=result.demand,
            job_level=result.used_job_level,
            queued=snapshot.queued_total,
            in_progress=snapshot.in_progress_total,
            runs=len(snapshot.runs)
        )
        return result

    async def fetch_snapshot(self, target: ScaleTarget, metric: MetricSpec) -> QueueSnapshot:
        """
        Fetch the queue snapshot of every repository the target polls.

        Job lists are only fetched when at least one run carries an ID.

        Raises:
            ProviderError: If any listing fails
        """
        repositories = polled_repositories(target, metric)

        try:
            listings = await gather_or_cancel(
                self._list_pending_runs(repository) for repository in repositories
            )

            queued_total = 0
            in_progress_total = 0
            runs: List[WorkflowRun] = []
            seen = set()
            for repository, (queued, in_progress) in zip(repositories, listings):
                queued_total += queued.total_count
                in_progress_total += in_progress.total_count
                for run in queued.runs + in_progress.runs:
                    if run.repository != repository:
                        run = run.model_copy(update={"repository": repository})
                    key = (run.repository, run.id)
                    if run.id != 0 and key in seen:
                        continue
                    seen.add(key)
                    runs.append(run)

            identified = [run for run in runs if run.id != 0 and run.status.is_pending]
            jobs: Dict[int, List[WorkflowJob]] = {}
            if identified:
                job_lists = await gather_or_cancel(
                    self.provider.list_workflow_jobs(run.repository, run.id) for run in identified
                )
                for run, run_jobs in zip(identified, job_lists):
                    jobs.setdefault(run.id, []).extend(run_jobs)

        except ProviderError as e:
            e.target = target.name
            self.logger.warning(
                "Failed to fetch queue snapshot",
                target=target.name,
                repository=e.repository,
                error=str(e)
            )
            raise
        except Exception as e:
            self.logger.error("Workflow provider failed", target=target.name, error=str(e))
            raise ProviderError(f"Workflow provider failed: {e}", target=target.name) from e

        return QueueSnapshot(
            queued_total=queued_total,
            in_progress_total=in_progress_total,
            runs=runs,
            jobs=jobs,
        )

    async def _list_pending_runs(self, repository: str) -> Tuple[WorkflowRunList, WorkflowRunList]:
        queued, in_progress = await gather_or_cancel([
            self.provider.list_workflow_runs(repository, RunStatusFilter.QUEUED),
            self.provider.list_workflow_runs(repository, RunStatusFilter.IN_PROGRESS),
        ])
        return queued, in_progress
