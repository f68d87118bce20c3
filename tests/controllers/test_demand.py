"""
Demand calculation tests.
"""

import asyncio

import pytest

from runner_autoscaler.controllers.demand import (
    DemandCalculator,
    DemandResult,
    compute_demand,
    polled_repositories,
)
from runner_autoscaler.errors import PolicyValidationError, ProviderError
from runner_autoscaler.models.scaling import (
    MetricSpec,
    QueueSnapshot,
    RunStatusFilter,
    ScaleTarget,
    WorkflowJob,
    WorkflowRun,
    WorkflowRunList,
)


CUSTOM = ["self-hosted", "custom"]


def custom_jobs_snapshot(labels=CUSTOM):
    """Three identified runs; five pending jobs in total."""
    return QueueSnapshot(
        queued_total=1,
        in_progress_total=2,
        runs=[
            WorkflowRun(id=1, status="queued"),
            WorkflowRun(id=2, status="in_progress"),
            WorkflowRun(id=3, status="in_progress"),
        ],
        jobs={
            1: [WorkflowJob(status="queued", labels=labels), WorkflowJob(status="queued", labels=labels)],
            2: [WorkflowJob(status="in_progress", labels=labels), WorkflowJob(status="completed", labels=labels)],
            3: [WorkflowJob(status="in_progress", labels=labels), WorkflowJob(status="queued", labels=labels)],
        },
    )


class TestComputeDemand:
    """Test run-level and job-level demand."""

    def test_run_level_demand(self):
        """Test demand from run totals."""
        target = ScaleTarget(name="testrd", repository="test/valid")
        snapshot = QueueSnapshot(
            queued_total=1,
            in_progress_total=2,
            runs=[
                WorkflowRun(status="queued"),
                WorkflowRun(status="in_progress"),
                WorkflowRun(status="in_progress"),
            ],
        )
        assert compute_demand(target, snapshot) == DemandResult(3, False)

    def test_run_level_ignores_labels(self):
        """Test that run-level demand ignores fleet labels."""
        target = ScaleTarget(name="testrd", repository="test/valid", labels=["custom2"])
        snapshot = QueueSnapshot(queued_total=2, in_progress_total=0, runs=[WorkflowRun(status="queued")] * 2)
        assert compute_demand(target, snapshot).demand == 2

    def test_empty_snapshot(self):
        """Test demand of an empty snapshot."""
        target = ScaleTarget(name="testrd", repository="test/valid")
        assert compute_demand(target, QueueSnapshot()) == DemandResult(0, False)

    @pytest.mark.parametrize("labels", [["self-hosted", "custom"], ["custom"]])
    def test_job_level_demand(self, labels):
        """Test demand from matching jobs."""
        target = ScaleTarget(name="testrd", repository="test/valid", labels=labels)
        assert compute_demand(target, custom_jobs_snapshot()) == DemandResult(5, True)

    @pytest.mark.parametrize("labels", [[], ["self-hosted"], ["custom2"]])
    def test_job_level_without_matching_labels(self, labels):
        """Zero job-level demand does not fall back to run totals."""
        target = ScaleTarget(name="testrd", repository="test/valid", labels=labels)
        assert compute_demand(target, custom_jobs_snapshot()) == DemandResult(0, True)

    def test_unlabelled_jobs_never_count(self):
        """Test that jobs without labels are not counted."""
        target = ScaleTarget(name="testrd", repository="test/valid", labels=["custom"])
        assert compute_demand(target, custom_jobs_snapshot(labels=None)) == DemandResult(0, True)

    def test_managed_runner_jobs_never_count(self):
        """Test that jobs for managed runners are not counted."""
        target = ScaleTarget(name="testrd", repository="test/valid", labels=["self-hosted"])
        snapshot = custom_jobs_snapshot(labels=["managed-runner-label"])
        assert compute_demand(target, snapshot).demand == 0

    def test_single_identified_run_switches_mode(self):
        """One run with an ID is enough to ignore run totals."""
        target = ScaleTarget(name="testrd", repository="test/valid")
        snapshot = QueueSnapshot(
            queued_total=10,
            in_progress_total=10,
            runs=[WorkflowRun(status="queued"), WorkflowRun(id=9, status="queued")],
            jobs={9: [WorkflowJob(status="queued", labels=["self-hosted"])]},
        )
        assert compute_demand(target, snapshot) == DemandResult(1, True)

    def test_identified_run_without_jobs(self):
        """Test an identified run whose jobs are unknown."""
        target = ScaleTarget(name="testrd", repository="test/valid")
        snapshot = QueueSnapshot(queued_total=1, runs=[WorkflowRun(id=4, status="queued")])
        assert compute_demand(target, snapshot) == DemandResult(0, True)

    def test_order_independent(self):
        """Test that run order does not change demand."""
        target = ScaleTarget(name="testrd", repository="test/valid", labels=["custom"])
        snapshot = custom_jobs_snapshot()
        reversed_snapshot = snapshot.model_copy(update={"runs": list(reversed(snapshot.runs))})
        assert compute_demand(target, snapshot) == compute_demand(target, reversed_snapshot)


class TestPolledRepositories:
    """Test the repositories a target polls."""

    def test_repository_target(self):
        """Test polling for a repository fleet."""
        target = ScaleTarget(name="testrd", repository="test/valid")
        assert polled_repositories(target, MetricSpec()) == ["test/valid"]

    def test_organization_target(self):
        """Test polling for an organization fleet."""
        target = ScaleTarget(name="orgrd", organization="test")
        metric = MetricSpec(repository_names=["valid", "other", "valid"])
        assert polled_repositories(target, metric) == ["test/valid", "test/other"]


class TestDemandCalculator:
    """Test snapshot fetching through a workflow provider."""

    @pytest.mark.asyncio
    async def test_legacy_snapshot_skips_job_listing(self, fake_provider, make_run_list):
        """Test that anonymous runs need no job listing."""
        provider = fake_provider(runs={
            "test/valid": {
                RunStatusFilter.QUEUED: make_run_list({"status": "queued"}),
                RunStatusFilter.IN_PROGRESS: make_run_list({"status": "in_progress"}, {"status": "in_progress"}),
            },
        })
        calculator = DemandCalculator(provider)
        target = ScaleTarget(name="testrd", repository="test/valid")

        snapshot = await calculator.fetch_snapshot(target, MetricSpec())
        assert snapshot.queued_total == 1
        assert snapshot.in_progress_total == 2
        assert snapshot.jobs == {}
        assert all(call[0] == "runs" for call in provider.calls)

        assert await calculator.compute(target, MetricSpec()) == DemandResult(3, False)

    @pytest.mark.asyncio
    async def test_job_level_fetch(self, fake_provider, make_run_list, make_job_list):
        """Test job listing for identified runs."""
        pending = [{"status": "queued", "labels": CUSTOM}, {"status": "completed", "labels": CUSTOM}]
        provider = fake_provider(
            runs={
                "test/valid": {
                    RunStatusFilter.QUEUED: make_run_list({"id": 1, "status": "queued"}),
                    RunStatusFilter.IN_PROGRESS: make_run_list({"id": 2, "status": "in_progress"}),
                },
            },
            jobs={
                ("test/valid", 1): make_job_list(*pending),
                ("test/valid", 2): make_job_list({"status": "in_progress", "labels": CUSTOM}),
            },
        )
        calculator = DemandCalculator(provider)
        target = ScaleTarget(name="testrd", repository="test/valid", labels=["custom"])

        result = await calculator.compute(target, MetricSpec())
        assert result == DemandResult(2, True)
        assert sorted(call[2] for call in provider.calls if call[0] == "jobs") == [1, 2]

    @pytest.mark.asyncio
    async def test_organization_fan_out(self, fake_provider, make_run_list):
        """Test listing every member repository."""
        provider = fake_provider(runs={
            "test/a": {RunStatusFilter.QUEUED: make_run_list({"status": "queued"})},
            "test/b": {
                RunStatusFilter.QUEUED: make_run_list({"status": "queued"}),
                RunStatusFilter.IN_PROGRESS: make_run_list({"status": "in_progress"}),
            },
        })
        calculator = DemandCalculator(provider)
        target = ScaleTarget(name="orgrd", organization="test")

        result = await calculator.compute(target, MetricSpec(repository_names=["a", "b"]))
        assert result == DemandResult(3, False)
        assert {call[1] for call in provider.calls} == {"test/a", "test/b"}

    @pytest.mark.asyncio
    async def test_duplicate_runs_are_counted_once(self, fake_provider, make_run_list, make_job_list):
        """A run moving from queued to in_progress between listings appears in both."""
        provider = fake_provider(
            runs={
                "test/valid": {
                    RunStatusFilter.QUEUED: make_run_list({"id": 5, "status": "queued"}),
                    RunStatusFilter.IN_PROGRESS: make_run_list({"id": 5, "status": "in_progress"}),
                },
            },
            jobs={("test/valid", 5): make_job_list({"status": "queued", "labels": ["self-hosted"]})},
        )
        calculator = DemandCalculator(provider)
        target = ScaleTarget(name="testrd", repository="test/valid")

        assert await calculator.compute(target, MetricSpec()) == DemandResult(1, True)

    @pytest.mark.asyncio
    async def test_provider_error_propagates(self, fake_provider):
        """Test that provider errors carry the target."""
        provider = fake_provider(failing_repositories=("test/valid",))
        calculator = DemandCalculator(provider)
        target = ScaleTarget(name="testrd", repository="test/valid")

        with pytest.raises(ProviderError) as exc_info:
            await calculator.compute(target, MetricSpec())
        assert exc_info.value.target == "testrd"
        assert exc_info.value.repository == "test/valid"

    @pytest.mark.asyncio
    async def test_unexpected_provider_exception_is_wrapped(self):
        """Test wrapping of unexpected provider exceptions."""
        class BrokenProvider:
            async def list_workflow_runs(self, repository, status):
                raise RuntimeError("connection reset")

            async def list_workflow_jobs(self, repository, run_id):
                return []

        calculator = DemandCalculator(BrokenProvider())
        target = ScaleTarget(name="testrd", repository="test/valid")

        with pytest.raises(ProviderError, match="connection reset"):
            await calculator.compute(target, MetricSpec())

    @pytest.mark.asyncio
    async def test_failure_cancels_sibling_requests(self):
        """A failed listing cancels the requests still in flight for other repositories."""
        finished = []

        class SlowSiblingProvider:
            async def list_workflow_runs(self, repository, status):
                if repository == "test/a":
                    raise ProviderError("listing failed", repository=repository, status_code=502)
                await asyncio.sleep(0.05)
                finished.append((repository, status))
                return WorkflowRunList()

            async def list_workflow_jobs(self, repository, run_id):
                return []

        calculator = DemandCalculator(SlowSiblingProvider())
        target = ScaleTarget(name="orgrd", organization="test")

        with pytest.raises(ProviderError) as exc_info:
            await calculator.compute(target, MetricSpec(repository_names=["a", "b"]))
        assert exc_info.value.repository == "test/a"

        await asyncio.sleep(0.1)
        assert finished == []

    @pytest.mark.asyncio
    async def test_unsupported_metric(self, fake_provider):
        """Test rejection of unknown metric kinds."""
        calculator = DemandCalculator(fake_provider())
        target = ScaleTarget(name="testrd", repository="test/valid")

        with pytest.raises(PolicyValidationError):
            await calculator.compute(target, MetricSpec(type="PercentageRunnersBusy"))
