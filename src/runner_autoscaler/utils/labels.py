"""
Runner label matching.

A job can only be placed on a fleet whose runners carry every label the job
asks for. Jobs without labels, or without the self-hosted label, target
provider-hosted runners and never count towards a fleet's demand.
"""

from typing import AbstractSet, Iterable, FrozenSet

from ..models.scaling import SELF_HOSTED_LABEL


def effective_labels(labels: Iterable[str]) -> FrozenSet[str]:
    """Labels a fleet offers: its configured labels plus self-hosted."""
    return frozenset(labels) | {SELF_HOSTED_LABEL}


def matches(job_labels: AbstractSet[str], fleet_labels: AbstractSet[str]) -> bool:
    """
    Check whether a job's label requirements are satisfiable by a fleet.

    Args:
        job_labels: Labels declared by the job (runs-on)
        fleet_labels: Effective labels of the fleet

    Returns:
        True if the job is self-hosted and every label it needs is offered
    """
    if not job_labels or SELF_HOSTED_LABEL not in job_labels:
        return False
    return set(job_labels) <= set(fleet_labels)
