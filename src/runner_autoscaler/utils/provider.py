"""
CI provider interface consumed by the demand calculator.

Adapters list workflow runs and jobs for a single repository. Organization
fleets are handled by the caller fanning out over the repository list.
Adapters raise ProviderError for every failure; they never retry.
"""

from typing import List, Protocol, runtime_checkable

from ..models.scaling import RunStatusFilter, WorkflowJob, WorkflowRunList


@runtime_checkable
class WorkflowProvider(Protocol):
    """Read access to a CI provider's workflow queue."""

    async def list_workflow_runs(self,
                                 repository: str,
                                 status: RunStatusFilter) -> WorkflowRunList:
        """List runs of an owner/repo repository filtered by status."""
        ...

    async def list_workflow_jobs(self, repository: str, run_id: int) -> List[WorkflowJob]:
        """List the jobs of one workflow run."""
        ...
