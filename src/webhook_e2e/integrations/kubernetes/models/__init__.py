"""Typed views of fetched Kubernetes resources."""

from webhook_e2e.integrations.kubernetes.models.base import K8sEntityBase
from webhook_e2e.integrations.kubernetes.models.workloads import (
    DaemonSetSummary,
    PodSummary,
    Toleration,
)

__all__ = [
    "DaemonSetSummary",
    "K8sEntityBase",
    "PodSummary",
    "Toleration",
]
