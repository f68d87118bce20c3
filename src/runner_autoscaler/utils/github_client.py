"""
GitHub Actions client for the runner autoscaler.

This module implements the workflow provider interface over the GitHub REST
API with httpx. Every failure, whether transport, HTTP status, rate limit or
an unexpected response body, is reported as a ProviderError so that the
caller can decide on retry and backoff.
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx
import structlog

from ..errors import ProviderError
from ..models.scaling import RunStatusFilter, WorkflowJob, WorkflowRun, WorkflowRunList
from .security import RateLimiter, SecurityError, validate_repository_name


DEFAULT_GITHUB_URL = "https://api.github.com"


class GitHubActionsClient:
    """
    Read-only GitHub Actions API client.

    Provides:
    - Paginated workflow run and job listing
    - Client-side rate limiting and bounded request concurrency
    - Validation of repository names before they reach request paths
    - Structured request logging and API usage counters
    """

    def __init__(self,
                 url: str = DEFAULT_GITHUB_URL,
                 token: Optional[str] = None,
                 timeout_seconds: float = 30.0,
                 per_page: int = 100,
                 max_pages: int = 10,
                 max_concurrent_requests: int = 8,
                 rate_limiter: Optional[RateLimiter] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 logger: Any = None) -> None:
        """
        Initialize the GitHub client.

        Args:
            url: GitHub API base URL
            token: Pre-issued API token sent as a bearer token
            timeout_seconds: Per-request timeout
            per_page: Page size for list endpoints
            max_pages: Upper bound on pages fetched per listing
            max_concurrent_requests: Requests allowed in flight at once
            rate_limiter: Client-side request budget
            transport: Custom httpx transport (used by tests)
            logger: Structured logger instance

        Raises:
            ValueError: If the URL is not an http(s) URL
        """
        self.logger = (logger or structlog.get_logger()).bind(component="github_client")

        self.url = self._validate_url(url)
        self.per_page = per_page
        self.max_pages = max_pages
        self.rate_limiter = rate_limiter or RateLimiter(max_requests=600, window_seconds=60)

        headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": "runner-autoscaler",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
            follow_redirects=False,
        )
        self._semaphore = asyncio.Semaphore(max_concurrent_requests)
        self._api_call_counts: Dict[str, int] = {}
        self._failed_requests = 0

        self.logger.debug("GitHub client initialized", url=self.url, has_token=bool(token))

    async def __aenter__(self) -> "GitHubActionsClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def list_workflow_runs(self,
                                 repository: str,
                                 status: RunStatusFilter) -> WorkflowRunList:
        """
        List workflow runs of a repository.

        Args:
            repository: owner/repo name
            status: Status filter; ALL lists runs regardless of status

        Returns:
            Total count reported by GitHub and the runs fetched

        Raises:
            ProviderError: If the runs cannot be fetched
        """
        repository = self._checked_repository(repository)
        params: Dict[str, Any] = {}
        if status != RunStatusFilter.ALL:
            params["status"] = status.value

        total_count, items = await self._paginate(
            f"/repos/{repository}/actions/runs",
            params,
            items_key="workflow_runs",
            repository=repository,
        )
        try:
            runs = [
                WorkflowRun(id=item.get("id"), status=item.get("status"), repository=repository)
                for item in items
            ]
        except (AttributeError, ValueError) as e:
            raise ProviderError(
                f"Malformed workflow run in response: {e}",
                repository=repository,
            ) from e

        self._count_call("list_workflow_runs")
        return WorkflowRunList(total_count=total_count, runs=runs)

    async def list_workflow_jobs(self, repository: str, run_id: int) -> List[WorkflowJob]:
        """
        List the jobs of a workflow run.

        Raises:
            ProviderError: If the jobs cannot be fetched
        """
        repository = self._checked_repository(repository)
        _, items = await self._paginate(
            f"/repos/{repository}/actions/runs/{int(run_id)}/jobs",
            {},
            items_key="jobs",
            repository=repository,
        )
        try:
            jobs = [
                WorkflowJob(
                    id=item.get("id"),
                    run_id=item.get("run_id") or run_id,
                    status=item.get("status"),
                    labels=item.get("labels"),
                )
                for item in items
            ]
        except (AttributeError, ValueError) as e:
            raise ProviderError(
                f"Malformed workflow job in response: {e}",
                repository=repository,
            ) from e

        self._count_call("list_workflow_jobs")
        return jobs

    async def _paginate(self,
                        path: str,
                        params: Dict[str, Any],
                        items_key: str,
                        repository: str) -> Tuple[int, List[Dict[str, Any]]]:
        """Fetch pages until GitHub runs out of items or max_pages is reached."""
        items: List[Dict[str, Any]] = []
        total_count = 0

        for page in range(1, self.max_pages + 1):
            body = await self._get_json(
                path,
                {**params, "per_page": self.per_page, "page": page},
                repository=repository,
            )
            page_items = body.get(items_key)
            if page_items is None:
                page_items = []
            if not isinstance(page_items, list):
                raise ProviderError(
                    f"Unexpected response format: {items_key} is not a list",
                    repository=repository,
                )

            items.extend(page_items)
            total_count = body.get("total_count", len(items))
            if not isinstance(total_count, int) or total_count < 0:
                raise ProviderError(
                    "Unexpected response format: invalid total_count",
                    repository=repository,
                )

            if len(page_items) < self.per_page or len(items) >= total_count:
                break
        else:
            self.logger.warning(
                "Listing truncated at page limit",
                path=path,
                max_pages=self.max_pages,
                fetched=len(items),
                total_count=total_count
            )

        return total_count, items

    async def _get_json(self,
                        path: str,
                        params: Dict[str, Any],
                        repository: str) -> Dict[str, Any]:
        """Issue a GET request and decode its JSON object body."""
        if not self.rate_limiter.allow_request("github_api"):
            raise ProviderError("Client-side GitHub API budget exhausted", repository=repository)

        try:
            async with self._semaphore:
                response = await self._client.get(path, params=params)
        except httpx.TimeoutException as e:
            self._failed_requests += 1
            self.logger.warning("GitHub API request timeout", path=path)
            raise ProviderError(f"Request timeout: {path}", repository=repository) from e
        except httpx.HTTPError as e:
            self._failed_requests += 1
            self.logger.error("GitHub API request failed", path=path, error=str(e))
            raise ProviderError(f"Request failed: {e}", repository=repository) from e

        self.logger.debug(
            "GitHub API request",
            path=path,
            page=params.get("page"),
            status_code=response.status_code
        )

        if response.status_code != 200:
            self._failed_requests += 1
            if self._is_rate_limited(response):
                message = "GitHub API rate limit exceeded"
            else:
                message = f"GitHub API returned {response.status_code} for {path}"
            self.logger.warning(
                "Unexpected GitHub API status",
                path=path,
                status_code=response.status_code,
                response_text=response.text[:200]
            )
            raise ProviderError(message, repository=repository, status_code=response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Response from {path} is not valid JSON",
                repository=repository,
                status_code=response.status_code,
            ) from e

        if not isinstance(body, dict):
            raise ProviderError(
                f"Unexpected response format from {path}",
                repository=repository,
                status_code=response.status_code,
            )
        return body

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        if response.status_code == 429:
            return True
        return (response.status_code == 403
                and response.headers.get("x-ratelimit-remaining") == "0")

    @staticmethod
    def _validate_url(url: str) -> str:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"GitHub URL must be an http(s) URL: {url!r}")
        if parsed.scheme == "http" and parsed.hostname not in ("localhost", "127.0.0.1"):
            raise ValueError("HTTP URLs only allowed for localhost")
        return url.rstrip("/")

    def _checked_repository(self, repository: str) -> str:
        try:
            return validate_repository_name(repository)
        except SecurityError as e:
            raise ProviderError(str(e), repository=repository) from e

    def _count_call(self, operation: str) -> None:
        self._api_call_counts[operation] = self._api_call_counts.get(operation, 0) + 1

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
        self.logger.debug(
            "GitHub client closed",
            api_calls=self._api_call_counts,
            failed_requests=self._failed_requests
        )

    def get_api_stats(self) -> Dict[str, Any]:
        """Get API usage statistics for monitoring."""
        return {
            "api_calls": self._api_call_counts.copy(),
            "failed_requests": self._failed_requests,
        }
