"""Fixtures for service tests: an in-memory cluster with webhook-like admission."""

from __future__ import annotations

import copy
import time
from collections.abc import Iterable
from typing import Any

import pytest
from kubernetes import client as k8s

from webhook_e2e.integrations.kubernetes.config import SuiteConfig
from webhook_e2e.integrations.kubernetes.exceptions import (
    KubernetesConflictError,
    KubernetesError,
    KubernetesForbiddenError,
    KubernetesNotFoundError,
)
from webhook_e2e.integrations.kubernetes.identity import Identity
from webhook_e2e.integrations.kubernetes.resources import ResourceRef
from webhook_e2e.services import fixtures


def _key(ref: ResourceRef) -> tuple[str, str | None, str]:
    return (ref.kind, ref.namespace, ref.name)


def daemon_set_spec(app: str = fixtures.WEBHOOK_DAEMONSET) -> k8s.V1DaemonSetSpec:
    """Smallest valid DaemonSet spec: a selector and a matching pod template."""
    labels = {"app": app}
    return k8s.V1DaemonSetSpec(
        selector=k8s.V1LabelSelector(match_labels=labels),
        template=k8s.V1PodTemplateSpec(
            metadata=k8s.V1ObjectMeta(labels=labels),
            spec=k8s.V1PodSpec(containers=[k8s.V1Container(name=app, image="pause")]),
        ),
    )


def ready_daemon_set(desired: int = 3, ready: int = 3) -> k8s.V1DaemonSet:
    """Webhook daemonset with the given rollout counters."""
    return k8s.V1DaemonSet(
        kind="DaemonSet",
        metadata=k8s.V1ObjectMeta(
            name=fixtures.WEBHOOK_DAEMONSET, namespace=fixtures.WEBHOOK_NAMESPACE
        ),
        spec=daemon_set_spec(),
        status=k8s.V1DaemonSetStatus(
            desired_number_scheduled=desired,
            current_number_scheduled=desired,
            number_ready=ready,
            number_available=ready,
            number_misscheduled=0,
        ),
    )


class FakeCluster:
    """Objects keyed by kind/namespace/name plus a pod admission policy.

    Pods may only be created by the ambient identity and by principals in
    ``allowed_principals``; everyone else gets Forbidden, as with the webhook.
    """

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str | None, str], Any] = {}
        self.allowed_principals: set[str] = set()
        self.webhook_enabled = True
        self.failures: dict[tuple[str, str], list[KubernetesError]] = {}
        self.calls: list[tuple[str, str, str, float | None]] = []
        self.create_delay = 0.0

    def put(self, obj: Any) -> None:
        self.objects[_key(ResourceRef.from_object(obj))] = obj

    def fail(self, verb: str, kind: str, *errors: KubernetesError) -> None:
        """Make the next calls of ``verb`` on ``kind`` raise ``errors`` in order."""
        self.failures.setdefault((verb, kind), []).extend(errors)

    def _maybe_fail(self, verb: str, ref: ResourceRef) -> None:
        queued = self.failures.get((verb, ref.kind))
        if queued:
            raise queued.pop(0)

    def seed_webhook(self, daemon_set: k8s.V1DaemonSet | None = None) -> None:
        """Create every object the existence scenario checks."""
        ns = fixtures.WEBHOOK_NAMESPACE
        self.put({"kind": "Namespace", "metadata": {"name": ns}})
        for kind, name in (
            ("ConfigMap", fixtures.WEBHOOK_CONFIGMAP),
            ("Secret", fixtures.WEBHOOK_SECRET),
            ("Service", fixtures.WEBHOOK_SERVICE),
        ):
            self.put({"kind": kind, "metadata": {"name": name, "namespace": ns}})
        self.put(daemon_set or ready_daemon_set())

    def pods(self) -> list[Any]:
        return [obj for (kind, _, _), obj in self.objects.items() if kind == "Pod"]


class FakeResourceClient:
    """ResourceClient double backed by a FakeCluster."""

    def __init__(self, cluster: FakeCluster, identity: Identity) -> None:
        self._cluster = cluster
        self.identity = identity

    def get(self, ref: ResourceRef, request_timeout: float | None = None) -> Any:
        self._cluster.calls.append(("get", self.identity.principal, str(ref), request_timeout))
        self._cluster._maybe_fail("get", ref)
        try:
            return self._cluster.objects[_key(ref)]
        except KeyError:
            raise KubernetesNotFoundError(
                resource_type=ref.kind, resource_name=ref.name, namespace=ref.namespace
            ) from None

    def create(self, obj: Any, request_timeout: float | None = None) -> Any:
        ref = ResourceRef.from_object(obj)
        self._cluster.calls.append(("create", self.identity.principal, str(ref), request_timeout))
        if self._cluster.create_delay:
            time.sleep(self._cluster.create_delay)
        self._cluster._maybe_fail("create", ref)
        if (
            ref.kind == "Pod"
            and self._cluster.webhook_enabled
            and self.identity.is_impersonated
            and self.identity.principal not in self._cluster.allowed_principals
        ):
            raise KubernetesForbiddenError(
                message='admission webhook "validation-webhook" denied the request',
                resource_type=ref.kind,
                resource_name=ref.name,
                namespace=ref.namespace,
            )
        if _key(ref) in self._cluster.objects:
            raise KubernetesConflictError(
                resource_type=ref.kind, resource_name=ref.name, namespace=ref.namespace
            )
        stored = copy.deepcopy(obj)
        self._cluster.put(stored)
        return stored

    def delete(self, target: Any, request_timeout: float | None = None) -> None:
        ref = target if isinstance(target, ResourceRef) else ResourceRef.from_object(target)
        self._cluster.calls.append(("delete", self.identity.principal, str(ref), request_timeout))
        self._cluster._maybe_fail("delete", ref)
        if self._cluster.objects.pop(_key(ref), None) is None:
            raise KubernetesNotFoundError(
                resource_type=ref.kind, resource_name=ref.name, namespace=ref.namespace
            )


class FakeIdentityFactory:
    """IdentityFactory double handing out FakeResourceClients."""

    def __init__(self, cluster: FakeCluster) -> None:
        self._cluster = cluster
        self.identities: list[Identity] = []

    def for_identity(self, identity: Identity) -> FakeResourceClient:
        self.identities.append(identity)
        return FakeResourceClient(self._cluster, identity)

    def ambient(self) -> FakeResourceClient:
        return self.for_identity(Identity.ambient())

    def for_user(self, principal: str, extra_groups: Iterable[str] = ()) -> FakeResourceClient:
        return self.for_identity(Identity.user(principal, extra_groups))

    def for_service_account(self, qualified_name: str) -> FakeResourceClient:
        return self.for_identity(Identity.service_account(qualified_name))


@pytest.fixture
def cluster() -> FakeCluster:
    """Cluster with the webhook deployed and the admin-project service account allowed."""
    fake = FakeCluster()
    fake.seed_webhook()
    fake.allowed_principals.add("system:serviceaccount:osde2e:dedicated-admin-project")
    return fake


@pytest.fixture
def factory(cluster: FakeCluster) -> FakeIdentityFactory:
    return FakeIdentityFactory(cluster)


@pytest.fixture
def suite_config() -> SuiteConfig:
    """Config with waits short enough for unit tests."""
    return SuiteConfig.model_validate(
        {
            "cluster": {"timeout": 30},
            "wait": {"poll_interval": 0.01, "daemonset_timeout": 0.2},
            "scenarios": {"create_pod_wait": 5, "delete_pod_wait": 5},
        }
    )


@pytest.fixture
def make_daemon_set() -> Any:
    """Builder for webhook daemonsets with chosen rollout counters."""
    return ready_daemon_set
