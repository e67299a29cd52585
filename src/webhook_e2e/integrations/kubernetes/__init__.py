"""Kubernetes integration - API client, identities and configuration models."""

from webhook_e2e.integrations.kubernetes.client import KubernetesClient
from webhook_e2e.integrations.kubernetes.config import (
    ClusterConfig,
    ScenarioConfig,
    SuiteConfig,
    WaitConfig,
)
from webhook_e2e.integrations.kubernetes.exceptions import (
    KubernetesAuthError,
    KubernetesConfigurationError,
    KubernetesConflictError,
    KubernetesConnectionError,
    KubernetesError,
    KubernetesForbiddenError,
    KubernetesNotFoundError,
    KubernetesTimeoutError,
    KubernetesValidationError,
    is_transient,
)
from webhook_e2e.integrations.kubernetes.identity import Identity, IdentityFactory
from webhook_e2e.integrations.kubernetes.resources import ResourceClient, ResourceRef

__all__ = [
    "ClusterConfig",
    "Identity",
    "IdentityFactory",
    "KubernetesAuthError",
    "KubernetesClient",
    "KubernetesConfigurationError",
    "KubernetesConflictError",
    "KubernetesConnectionError",
    "KubernetesError",
    "KubernetesForbiddenError",
    "KubernetesNotFoundError",
    "KubernetesTimeoutError",
    "KubernetesValidationError",
    "ResourceClient",
    "ResourceRef",
    "ScenarioConfig",
    "SuiteConfig",
    "WaitConfig",
    "is_transient",
]
