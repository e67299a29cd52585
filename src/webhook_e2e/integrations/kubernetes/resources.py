"""Typed get/create/delete over the resource kinds the suite touches."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, field_validator

if TYPE_CHECKING:
    from collections.abc import Callable

    from kubernetes.client import ApiClient, AppsV1Api, CoreV1Api

    from webhook_e2e.integrations.kubernetes.exceptions import KubernetesError
    from webhook_e2e.integrations.kubernetes.identity import Identity

logger = structlog.get_logger()

_MODEL_PREFIX = re.compile(r"^V\d+(?:alpha\d+|beta\d+)?(?=[A-Z])")


@dataclass(frozen=True)
class KindOperations:
    """How a kind maps onto the generated API methods."""

    api: str
    suffix: str
    namespaced: bool = True


SUPPORTED_KINDS: dict[str, KindOperations] = {
    "Namespace": KindOperations("core_v1", "namespace", namespaced=False),
    "ConfigMap": KindOperations("core_v1", "namespaced_config_map"),
    "Secret": KindOperations("core_v1", "namespaced_secret"),
    "Service": KindOperations("core_v1", "namespaced_service"),
    "Pod": KindOperations("core_v1", "namespaced_pod"),
    "DaemonSet": KindOperations("apps_v1", "namespaced_daemon_set"),
}


def _operations_for(kind: str) -> KindOperations:
    try:
        return SUPPORTED_KINDS[kind]
    except KeyError:
        supported = ", ".join(sorted(SUPPORTED_KINDS))
        raise ValueError(f"Unsupported kind '{kind}' (supported: {supported})") from None


class ResourceRef(BaseModel):
    """Handle to a remote object: kind, name and namespace, no content."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: str
    name: str
    namespace: str | None = None

    @field_validator("kind")
    @classmethod
    def validate_kind(cls, v: str) -> str:
        """Validate the kind is one the client can operate on."""
        _operations_for(v)
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate the name is set."""
        if not v:
            raise ValueError("name must not be empty")
        return v

    @classmethod
    def from_object(cls, obj: Any) -> ResourceRef:
        """Build a ref from a kubernetes SDK model or a manifest dict."""
        if isinstance(obj, dict):
            metadata = obj.get("metadata") or {}
            kind = obj.get("kind") or ""
            name = metadata.get("name") or ""
            namespace = metadata.get("namespace")
        else:
            kind = getattr(obj, "kind", None) or _MODEL_PREFIX.sub("", type(obj).__name__)
            metadata = getattr(obj, "metadata", None)
            name = getattr(metadata, "name", None) or ""
            namespace = getattr(metadata, "namespace", None)
        return cls(kind=kind, name=name, namespace=namespace)

    def __str__(self) -> str:
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"


class ResourceClient:
    """Get, create and delete cluster objects as one identity.

    Every call is a single remote request. Errors are translated to the
    ``KubernetesError`` hierarchy so callers can tell Forbidden, NotFound and
    Conflict apart; nothing is retried here.
    """

    def __init__(
        self,
        api_client: ApiClient,
        identity: Identity,
        translate: Callable[..., KubernetesError],
    ) -> None:
        """Initialize the client.

        Args:
            api_client: ApiClient whose transport applies ``identity``.
            identity: The actor this client represents.
            translate: Maps raw API exceptions to ``KubernetesError``.
        """
        self._api_client = api_client
        self._identity = identity
        self._translate = translate
        self._core_v1: CoreV1Api | None = None
        self._apps_v1: AppsV1Api | None = None
        self._log = logger.bind(principal=identity.display_name)

    @property
    def identity(self) -> Identity:
        """The actor requests are made as."""
        return self._identity

    @property
    def core_v1(self) -> CoreV1Api:
        """Get CoreV1Api instance (pods, services, namespaces, secrets, configmaps)."""
        if self._core_v1 is None:
            from kubernetes.client import CoreV1Api

            self._core_v1 = CoreV1Api(self._api_client)
        return self._core_v1

    @property
    def apps_v1(self) -> AppsV1Api:
        """Get AppsV1Api instance (daemonsets)."""
        if self._apps_v1 is None:
            from kubernetes.client import AppsV1Api

            self._apps_v1 = AppsV1Api(self._api_client)
        return self._apps_v1

    def get(self, ref: ResourceRef, request_timeout: float | None = None) -> Any:
        """Fetch the object at ``ref``.

        Raises:
            KubernetesNotFoundError: If the object does not exist.
            KubernetesError: For any other API failure.
        """
        ops = _operations_for(ref.kind)
        self._log.debug("getting_resource", kind=ref.kind, name=ref.name, namespace=ref.namespace)
        kwargs = self._scope(ops, ref, name=ref.name)
        return self._call("read", ops, ref, request_timeout, **kwargs)

    def create(self, obj: Any, request_timeout: float | None = None) -> Any:
        """Create ``obj`` and return the object the API server stored.

        Raises:
            KubernetesForbiddenError: If authorization or admission denied it.
            KubernetesConflictError: If an object with the same name exists.
            KubernetesError: For any other API failure.
        """
        ref = ResourceRef.from_object(obj)
        ops = _operations_for(ref.kind)
        self._log.debug(
            "creating_resource", kind=ref.kind, name=ref.name, namespace=ref.namespace
        )
        kwargs = self._scope(ops, ref, body=obj)
        created = self._call("create", ops, ref, request_timeout, **kwargs)
        self._log.info("created_resource", kind=ref.kind, name=ref.name, namespace=ref.namespace)
        return created

    def delete(self, target: Any, request_timeout: float | None = None) -> None:
        """Delete the object identified by ``target`` (a ref or an object).

        Raises:
            KubernetesNotFoundError: If the object is already gone.
            KubernetesError: For any other API failure.
        """
        ref = target if isinstance(target, ResourceRef) else ResourceRef.from_object(target)
        ops = _operations_for(ref.kind)
        self._log.debug(
            "deleting_resource", kind=ref.kind, name=ref.name, namespace=ref.namespace
        )
        kwargs = self._scope(ops, ref, name=ref.name)
        self._call("delete", ops, ref, request_timeout, **kwargs)
        self._log.info("deleted_resource", kind=ref.kind, name=ref.name, namespace=ref.namespace)

    @staticmethod
    def _scope(ops: KindOperations, ref: ResourceRef, **kwargs: Any) -> dict[str, Any]:
        if ops.namespaced:
            if not ref.namespace:
                raise ValueError(f"{ref.kind} '{ref.name}' requires a namespace")
            kwargs["namespace"] = ref.namespace
        return kwargs

    def _call(
        self,
        verb: str,
        ops: KindOperations,
        ref: ResourceRef,
        request_timeout: float | None,
        **kwargs: Any,
    ) -> Any:
        method = getattr(getattr(self, ops.api), f"{verb}_{ops.suffix}")
        if request_timeout is not None:
            kwargs["_request_timeout"] = request_timeout
        try:
            return method(**kwargs)
        except Exception as e:
            raise self._translate(
                e,
                resource_type=ref.kind,
                resource_name=ref.name,
                namespace=ref.namespace,
            ) from e
