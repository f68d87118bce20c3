"""
Request hygiene for the CI provider adapter.

This module provides client-side rate limiting and validation of the
repository names and labels that end up in provider request paths.
"""

import re
import time
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Deque, Dict, Set

import structlog


REPOSITORY_NAME_RE = re.compile(r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$")
LABEL_RE = re.compile(r"^[A-Za-z0-9_.:/ -]{1,128}$")


class SecurityError(Exception):
    """Raised when an identifier fails validation."""
    pass


class RateLimiter:
    """
    Sliding window rate limiter.

    Keeps the autoscaler inside the provider's API budget. An identifier that
    exceeds its window is blocked for a short penalty period.
    """

    def __init__(self,
                 max_requests: int = 100,
                 window_seconds: int = 60,
                 block_seconds: int = 30) -> None:
        """
        Initialize rate limiter.

        Args:
            max_requests: Maximum requests allowed in time window
            window_seconds: Time window in seconds
            block_seconds: Penalty applied after the window is exceeded
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.block_duration = timedelta(seconds=block_seconds)
        self.requests: Dict[str, Deque[float]] = defaultdict(deque)
        self.blocked: Dict[str, datetime] = {}
        self.violators: Set[str] = set()

        self.logger = structlog.get_logger().bind(component="rate_limiter")

    def allow_request(self, identifier: str, weight: int = 1) -> bool:
        """
        Check if request is allowed based on rate limits.

        Args:
            identifier: Bucket to charge the request against
            weight: Request weight (default 1)

        Returns:
            True if request is allowed, False if rate limited
        """
        if self.is_blocked(identifier):
            return False

        current_time = time.monotonic()
        window_start = current_time - self.window_seconds
        request_times = self.requests[identifier]

        while request_times and request_times[0] < window_start:
            request_times.popleft()

        if len(request_times) + weight > self.max_requests:
            self._handle_violation(identifier)
            return False

        for _ in range(weight):
            request_times.append(current_time)

        return True

    def _handle_violation(self, identifier: str) -> None:
        self.violators.add(identifier)
        self.blocked[identifier] = datetime.now(timezone.utc) + self.block_duration
        self.logger.warning(
            "Rate limit exceeded",
            identifier=identifier,
            max_requests=self.max_requests,
            window_seconds=self.window_seconds,
            blocked_for=self.block_duration.total_seconds()
        )

    def is_blocked(self, identifier: str) -> bool:
        """Check if identifier is currently blocked."""
        if identifier not in self.blocked:
            return False

        if datetime.now(timezone.utc) >= self.blocked[identifier]:
            del self.blocked[identifier]
            return False

        return True

    def get_remaining_requests(self, identifier: str) -> int:
        """Get remaining requests for identifier in current window."""
        window_start = time.monotonic() - self.window_seconds
        current_requests = sum(1 for ts in self.requests[identifier] if ts >= window_start)
        return max(0, self.max_requests - current_requests)

    def reset_identifier(self, identifier: str) -> None:
        """Forget all recorded requests and penalties for an identifier."""
        self.requests.pop(identifier, None)
        self.blocked.pop(identifier, None)
        self.violators.discard(identifier)


def validate_repository_name(name: str) -> str:
    """
    Validate an owner/repo name before it is interpolated into a URL.

    Raises:
        SecurityError: If the name is not a plain owner/repo pair
    """
    if not isinstance(name, str) or not REPOSITORY_NAME_RE.match(name):
        raise SecurityError(f"Invalid repository name: {name!r}")
    if ".." in name:
        raise SecurityError(f"Repository name must not contain '..': {name!r}")
    return name


def validate_label(label: str) -> str:
    """Validate a runner capability label."""
    if not isinstance(label, str) or not LABEL_RE.match(label):
        raise SecurityError(f"Invalid runner label: {label!r}")
    return label
