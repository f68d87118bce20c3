"""
Error types raised by the runner autoscaler.

Every error is scoped to a single scale target's reconciliation pass. The
caller decides whether to retry; the engine itself never does.
"""

from typing import Optional


class AutoscalerError(Exception):
    """Base class for all autoscaler failures."""

    kind = "internal"

    def __init__(self, message: str, target: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.target = target


class PolicyValidationError(AutoscalerError):
    """
    Raised when an autoscaling policy does not fit its scale target.

    Indicates a configuration defect rather than a transient condition, so
    the message is meant to be shown to the operator verbatim.
    """

    kind = "validation"


class ProviderError(AutoscalerError):
    """Raised when workflow runs or jobs cannot be fetched from the CI provider."""

    kind = "provider"

    def __init__(self,
                 message: str,
                 repository: Optional[str] = None,
                 status_code: Optional[int] = None,
                 target: Optional[str] = None) -> None:
        super().__init__(message, target=target)
        self.repository = repository
        self.status_code = status_code


class InternalInvariantError(AutoscalerError):
    """Raised when resolved inputs violate an invariant the resolver guarantees."""

    kind = "invariant"


class ConfigurationError(Exception):
    """Raised when the autoscaler configuration cannot be loaded."""
    pass
