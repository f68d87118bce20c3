"""
Utility modules for the runner autoscaler.

This package contains the label matcher, the CI provider interface and its
GitHub implementation, and request hygiene helpers.
"""

from .github_client import GitHubActionsClient
from .labels import effective_labels, matches
from .provider import WorkflowProvider
from .security import RateLimiter, SecurityError, validate_label, validate_repository_name

__all__ = [
    "GitHubActionsClient",
    "RateLimiter",
    "SecurityError",
    "WorkflowProvider",
    "effective_labels",
    "matches",
    "validate_label",
    "validate_repository_name",
]
