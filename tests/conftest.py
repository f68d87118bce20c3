"""
Shared fixtures for runner autoscaler tests.

Provides an in-memory workflow provider and an httpx mock transport that
serves GitHub Actions API responses from plain dictionaries.
"""

import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest

from runner_autoscaler.errors import ProviderError
from runner_autoscaler.models.scaling import (
    RunStatusFilter,
    WorkflowJob,
    WorkflowRun,
    WorkflowRunList,
)


NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

RUNS_PATH = re.compile(r"^/repos/(?P<repo>[^/]+/[^/]+)/actions/runs$")
JOBS_PATH = re.compile(r"^/repos/(?P<repo>[^/]+/[^/]+)/actions/runs/(?P<run_id>\d+)/jobs$")


class FakeWorkflowProvider:
    """In-memory workflow provider recording every call it serves."""

    def __init__(self,
                 runs: Optional[Dict[str, Dict[RunStatusFilter, WorkflowRunList]]] = None,
                 jobs: Optional[Dict[Tuple[str, int], List[WorkflowJob]]] = None,
                 failing_repositories: Tuple[str, ...] = ()) -> None:
        self.runs = runs or {}
        self.jobs = jobs or {}
        self.failing_repositories = set(failing_repositories)
        self.calls: List[Tuple[Any, ...]] = []

    async def list_workflow_runs(self, repository: str, status: RunStatusFilter) -> WorkflowRunList:
        self.calls.append(("runs", repository, status))
        if repository in self.failing_repositories:
            raise ProviderError("listing failed", repository=repository, status_code=502)
        return self.runs.get(repository, {}).get(status, WorkflowRunList())

    async def list_workflow_jobs(self, repository: str, run_id: int) -> List[WorkflowJob]:
        self.calls.append(("jobs", repository, run_id))
        if repository in self.failing_repositories:
            raise ProviderError("job listing failed", repository=repository, status_code=502)
        return list(self.jobs.get((repository, run_id), []))


def run_list(*runs: Dict[str, Any]) -> WorkflowRunList:
    return WorkflowRunList(total_count=len(runs), runs=[WorkflowRun(**run) for run in runs])


def job_list(*jobs: Dict[str, Any]) -> List[WorkflowJob]:
    return [WorkflowJob(**job) for job in jobs]


def github_transport(runs: Dict[str, Dict[str, Any]],
                     jobs: Optional[Dict[Tuple[str, int], Any]] = None,
                     recorded: Optional[List[httpx.Request]] = None) -> httpx.MockTransport:
    """
    Mock GitHub API.

    Args:
        runs: repository -> status filter ("queued", "in_progress", "all") -> body
        jobs: (repository, run_id) -> body
        recorded: Optional list collecting every request served
    """
    jobs = jobs or {}

    def handler(request: httpx.Request) -> httpx.Response:
        if recorded is not None:
            recorded.append(request)

        match = JOBS_PATH.match(request.url.path)
        if match:
            body = jobs.get((match["repo"], int(match["run_id"])))
            if body is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=body)

        match = RUNS_PATH.match(request.url.path)
        if match:
            if request.url.params.get("page", "1") != "1":
                return httpx.Response(200, json={"total_count": 0, "workflow_runs": []})
            status = request.url.params.get("status", "all")
            body = runs.get(match["repo"], {}).get(status)
            if body is None:
                body = {"total_count": 0, "workflow_runs": []}
            return httpx.Response(200, json=body)

        return httpx.Response(404, json={"message": "Not Found"})

    return httpx.MockTransport(handler)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def fake_provider():
    return FakeWorkflowProvider


@pytest.fixture
def make_run_list():
    return run_list


@pytest.fixture
def make_job_list():
    return job_list


@pytest.fixture
def make_github_transport():
    return github_transport
