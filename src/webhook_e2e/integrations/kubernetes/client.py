"""Kubernetes API client wrapper.

Loads cluster credentials once into a private ``Configuration`` and hands out
``ApiClient`` instances that share a single connection pool. Each handed-out
client carries its own impersonation headers, so callers acting as different
identities never touch shared mutable state.
"""

from __future__ import annotations

import copy
import json
from typing import TYPE_CHECKING, Any

import structlog
from kubernetes.client import rest
from urllib3 import HTTPHeaderDict

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
)

if TYPE_CHECKING:
    from kubernetes.client import ApiClient, Configuration, VersionApi

    from webhook_e2e.integrations.kubernetes.config import ClusterConfig
    from webhook_e2e.integrations.kubernetes.identity import Identity

logger = structlog.get_logger()

IMPERSONATE_USER_HEADER = "Impersonate-User"
IMPERSONATE_GROUP_HEADER = "Impersonate-Group"


class ImpersonatingRESTClient(rest.RESTClientObject):  # type: ignore[misc]
    """REST transport that stamps one identity on every request.

    Instances borrow the pool manager of the base client and never build one
    of their own, so every identity shares connections. The base client owns
    the pool; closing a transport leaves it open.

    Groups are sent as repeated ``Impersonate-Group`` headers, which is what
    the API server expects; a comma-joined value would be read as a single
    group.
    """

    def __init__(
        self,
        configuration: Configuration,
        identity: Identity,
        pool_manager: Any,
    ) -> None:
        self.configuration = configuration
        self.pool_manager = pool_manager
        self.identity = identity

    def close(self) -> None:
        """Leave the shared pool to the base client."""

    def request(self, method: str, url: str, headers: Any = None, **kwargs: Any) -> Any:
        """Send a request with this transport's impersonation headers."""
        return super().request(method, url, headers=self.impersonation_headers(headers), **kwargs)

    def impersonation_headers(self, headers: Any = None) -> HTTPHeaderDict:
        """Merge the identity into ``headers``, replacing any previous identity."""
        merged = HTTPHeaderDict(headers or {})
        merged.discard(IMPERSONATE_USER_HEADER)
        merged.discard(IMPERSONATE_GROUP_HEADER)
        if self.identity.principal:
            merged[IMPERSONATE_USER_HEADER] = self.identity.principal
            for group in self.identity.groups:
                merged.add(IMPERSONATE_GROUP_HEADER, group)
        return merged


class KubernetesClient:
    """Connection to the cluster under test.

    Wraps the official kubernetes Python client with:
    - Kubeconfig or in-cluster credential loading into a private Configuration
    - One shared connection pool for every identity
    - Per-identity ApiClient construction with request-scoped impersonation
    - Consistent error translation to custom exceptions
    - Context manager support

    Example:
        ```python
        from webhook_e2e.integrations.kubernetes import KubernetesClient
        from webhook_e2e.integrations.kubernetes.config import SuiteConfig

        config = SuiteConfig.from_env()
        with KubernetesClient(config.cluster) as client:
            print(client.get_cluster_version())
        ```
    """

    def __init__(self, cluster_config: ClusterConfig) -> None:
        """Initialize the client from cluster config.

        Args:
            cluster_config: Kubeconfig location and context.

        Raises:
            KubernetesConfigurationError: If no usable credentials are found.
        """
        self._config = cluster_config
        self._current_context: str | None = None
        self._configuration: Configuration | None = None
        self._base_api_client: ApiClient | None = None
        self._version_api: VersionApi | None = None

        self._load_config()

        logger.info(
            "Kubernetes client initialized",
            context=self._current_context,
        )

    def _load_config(self) -> None:
        """Load Kubernetes configuration from kubeconfig or in-cluster."""
        from kubernetes import client, config
        from kubernetes.config import ConfigException

        configuration = client.Configuration()
        context = self._config.context or None

        try:
            config.load_kube_config(
                config_file=self._config.kubeconfig,
                context=context,
                client_configuration=configuration,
            )
            self._current_context = context or "current-context"
            logger.debug(
                "loaded_kubeconfig",
                context=context,
                kubeconfig=self._config.kubeconfig,
            )
        except (ConfigException, FileNotFoundError):
            try:
                config.load_incluster_config(client_configuration=configuration)
                self._current_context = "in-cluster"
                logger.debug("loaded_incluster_config")
            except ConfigException as e:
                raise KubernetesConfigurationError(
                    message="Cannot load Kubernetes configuration. "
                    "Ensure kubeconfig exists or running inside a cluster.",
                    original_error=e,
                ) from e

        self._configuration = configuration
        self._base_api_client = client.ApiClient(configuration=configuration)

    # =========================================================================
    # Identity-bound API clients
    # =========================================================================

    def api_client_for(self, identity: Identity) -> ApiClient:
        """Create an ApiClient that acts as ``identity`` on every request.

        The new client shares this client's connection pool but owns its
        headers; nothing on ``self`` changes.

        Args:
            identity: The actor to impersonate. An empty principal means the
                loaded credential is used as-is.

        Raises:
            KubernetesConfigurationError: If the client cannot be constructed.
        """
        if self._configuration is None or self._base_api_client is None:
            raise KubernetesConfigurationError("Kubernetes client is closed")

        try:
            api_client = copy.copy(self._base_api_client)
            api_client.default_headers = dict(self._base_api_client.default_headers)
            api_client.rest_client = ImpersonatingRESTClient(
                self._configuration,
                identity,
                self._base_api_client.rest_client.pool_manager,
            )
        except Exception as e:
            raise KubernetesConfigurationError(
                message=f"Failed to create API client for '{identity.display_name}'",
                original_error=e,
            ) from e
        return api_client

    @property
    def version_api(self) -> VersionApi:
        """Get VersionApi instance for cluster version info."""
        if self._version_api is None:
            from kubernetes.client import VersionApi

            self._version_api = VersionApi(self._base_api_client)
        return self._version_api

    def get_current_context(self) -> str:
        """Get the current active context name.

        Returns:
            The current context name, or 'in-cluster' if running inside a pod.
        """
        return self._current_context or "unknown"

    # =========================================================================
    # Error Translation
    # =========================================================================

    @staticmethod
    def translate_api_exception(
        e: Exception,
        resource_type: str | None = None,
        resource_name: str | None = None,
        namespace: str | None = None,
    ) -> KubernetesError:
        """Translate a kubernetes or transport exception to a custom exception.

        Args:
            e: The original exception.
            resource_type: Type of resource being operated on.
            resource_name: Name of the resource.
            namespace: Namespace of the resource.

        Returns:
            An appropriate KubernetesError subclass.
        """
        from kubernetes.client import ApiException
        from urllib3.exceptions import HTTPError, TimeoutError

        if isinstance(e, KubernetesError):
            return e

        if isinstance(e, TimeoutError):
            return KubernetesTimeoutError(message=f"Request timed out: {e}")

        if isinstance(e, HTTPError | ConnectionError):
            return KubernetesConnectionError(
                message=f"Connection to Kubernetes API failed: {e}",
                original_error=e,
            )

        if not isinstance(e, ApiException):
            return KubernetesError(
                message=str(e),
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        status = e.status
        message = _status_message(e)

        if not status:
            # The REST layer reports SSL and protocol failures with status 0.
            return KubernetesConnectionError(message=message, original_error=e)

        if status == 403:
            return KubernetesForbiddenError(
                message=message,
                reason=e.reason,
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status == 401:
            return KubernetesAuthError(
                message=message or "Authentication failed",
                status_code=status,
                reason=e.reason,
            )

        if status == 404:
            return KubernetesNotFoundError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status == 409:
            return KubernetesConflictError(
                resource_type=resource_type,
                resource_name=resource_name,
                namespace=namespace,
            )

        if status in (400, 422):
            return KubernetesValidationError(
                message=message or "Validation failed",
                status_code=status,
            )

        if status == 504:
            return KubernetesTimeoutError(message=message)

        return KubernetesError(
            message=message or f"Kubernetes API error: {status}",
            status_code=status,
            resource_type=resource_type,
            resource_name=resource_name,
            namespace=namespace,
        )

    # =========================================================================
    # Connection Check
    # =========================================================================

    def check_connection(self) -> bool:
        """Check if connection to the Kubernetes API server is working.

        Returns:
            True if connection is successful, False otherwise.
        """
        try:
            self.version_api.get_code()
            return True
        except Exception:
            return False

    def get_cluster_version(self) -> str:
        """Get the Kubernetes cluster version string.

        Returns:
            Kubernetes version (e.g., "v1.28").

        Raises:
            KubernetesConnectionError: If the cluster is unreachable.
        """
        try:
            version_info = self.version_api.get_code()
            return f"v{version_info.major}.{version_info.minor}"
        except Exception as e:
            raise KubernetesConnectionError(
                message="Failed to get cluster version",
                original_error=e,
            ) from e

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """Close the client and release pooled connections."""
        if self._base_api_client is not None:
            self._base_api_client.rest_client.pool_manager.clear()
            self._base_api_client.close()
        self._base_api_client = None
        self._configuration = None
        self._version_api = None
        logger.debug("Kubernetes client closed")

    def __enter__(self) -> KubernetesClient:
        """Context manager entry."""
        return self

    def __exit__(self, *args: Any) -> None:
        """Context manager exit."""
        self.close()


def _status_message(e: Any) -> str:
    """Extract the API server's Status message from an ApiException body."""
    body = getattr(e, "body", None)
    if body:
        try:
            payload = json.loads(body)
        except (TypeError, ValueError):
            payload = None
        if isinstance(payload, dict) and payload.get("message"):
            return str(payload["message"])
    return str(getattr(e, "reason", "") or "")
