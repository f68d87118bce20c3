"""
Runner Autoscaler for Kubernetes.

Decides how many ephemeral GitHub Actions runner replicas a fleet should
have, from the provider's workflow run and job queue.

This package implements:
- Run-level and label-aware job-level demand calculation
- Floor, ceiling and manual override resolution per fleet
- Scale-down hysteresis measured from the last scale-out
"""

__version__ = "0.1.0"

from .controllers.autoscaler import HorizontalRunnerAutoscaler, ReconcileRequest
from .errors import (
    AutoscalerError,
    InternalInvariantError,
    PolicyValidationError,
    ProviderError,
)
from .models.scaling import AutoscalingPolicy, MetricSpec, ScaleHistory, ScaleTarget

__all__ = [
    "AutoscalerError",
    "AutoscalingPolicy",
    "HorizontalRunnerAutoscaler",
    "InternalInvariantError",
    "MetricSpec",
    "PolicyValidationError",
    "ProviderError",
    "ReconcileRequest",
    "ScaleHistory",
    "ScaleTarget",
]
