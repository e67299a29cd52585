"""Integration fixtures: a throwaway K3S cluster from testcontainers.

K3S authorizes with RBAC and lets the admin credential impersonate anyone, so
requests made as unbound users are really Forbidden and the identity handling
is exercised end to end. No admission webhook runs here; the webhook's
objects are stand-ins created by ``webhook_objects``.
"""

from __future__ import annotations

import contextlib
import subprocess
import time
from collections.abc import Generator
from pathlib import Path

import pytest
import yaml
from kubernetes import client as k8s
from testcontainers.core.container import DockerContainer
from testcontainers.core.waiting_utils import wait_for_logs

from webhook_e2e.integrations.kubernetes.client import KubernetesClient
from webhook_e2e.integrations.kubernetes.config import SuiteConfig
from webhook_e2e.integrations.kubernetes.exceptions import KubernetesConflictError
from webhook_e2e.integrations.kubernetes.identity import Identity, IdentityFactory
from webhook_e2e.services import fixtures

# ============================================================================
# Docker Availability Check
# ============================================================================


def _docker_available() -> bool:
    """Check if Docker daemon is running."""
    try:
        result = subprocess.run(
            ["docker", "info"],
            capture_output=True,
            timeout=10,
        )
        return result.returncode == 0
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return False


# ============================================================================
# K3S Container Class
# ============================================================================

K3S_IMAGE = "rancher/k3s:v1.31.4-k3s1"
PAUSE_IMAGE = "rancher/mirrored-pause:3.6"


class K3SContainer(DockerContainer):  # type: ignore[misc]
    """Single-node K3S cluster with the API server on a random host port."""

    K8S_API_PORT = 6443

    def __init__(self, image: str = K3S_IMAGE) -> None:
        super().__init__(image)
        self.with_command(
            "server"
            " --disable=traefik"
            " --disable=metrics-server"
            " --tls-san=0.0.0.0"
            " --write-kubeconfig-mode=644"
        )
        self.with_exposed_ports(self.K8S_API_PORT)
        self.with_kwargs(
            privileged=True,
            tmpfs={"/run": "", "/var/run": ""},
        )

    def get_kubeconfig(self) -> str:
        """Read the admin kubeconfig, pointed at the mapped host port."""
        exit_code, output = self.exec("cat /etc/rancher/k3s/k3s.yaml")
        if exit_code != 0:
            raise RuntimeError(f"Failed to read kubeconfig: {output}")

        config = yaml.safe_load(output.decode("utf-8"))
        host = self.get_container_host_ip()
        port = self.get_exposed_port(self.K8S_API_PORT)
        for cluster in config.get("clusters", []):
            cluster.get("cluster", {})["server"] = f"https://{host}:{port}"
        return yaml.dump(config)


# ============================================================================
# Cluster Fixtures (Session-Scoped)
# ============================================================================


@pytest.fixture(scope="session")
def k3s_container() -> Generator[K3SContainer]:
    """Session-scoped K3S container shared by every integration test."""
    if not _docker_available():
        pytest.skip("Docker not available -- skipping K3S integration tests")

    container = K3SContainer()
    with container:
        wait_for_logs(container, "Node controller sync successful", timeout=120)
        time.sleep(2)
        yield container


@pytest.fixture(scope="session")
def k3s_kubeconfig_path(
    k3s_container: K3SContainer,
    tmp_path_factory: pytest.TempPathFactory,
) -> Path:
    """Write the K3S kubeconfig to a temp file."""
    kubeconfig_path = tmp_path_factory.mktemp("k3s") / "kubeconfig.yaml"
    kubeconfig_path.write_text(k3s_container.get_kubeconfig())
    return kubeconfig_path


@pytest.fixture(scope="session")
def suite_config(k3s_kubeconfig_path: Path) -> SuiteConfig:
    """Suite config for the K3S cluster with short waits."""
    return SuiteConfig.model_validate(
        {
            "cluster": {"kubeconfig": str(k3s_kubeconfig_path), "timeout": 30},
            "wait": {"poll_interval": 1, "daemonset_timeout": 180},
            "scenarios": {"pod_image": PAUSE_IMAGE},
        }
    )


@pytest.fixture(scope="session")
def kube_client(suite_config: SuiteConfig) -> Generator[KubernetesClient]:
    """Session-scoped client connected to the K3S cluster."""
    client = KubernetesClient(suite_config.cluster)
    yield client
    client.close()


@pytest.fixture(scope="session")
def factory(kube_client: KubernetesClient) -> IdentityFactory:
    return IdentityFactory(kube_client)


@pytest.fixture(scope="session")
def admin_api(kube_client: KubernetesClient) -> k8s.ApiClient:
    """Raw admin ApiClient for setup the suite itself never does (RBAC)."""
    return kube_client.api_client_for(Identity.ambient())


# ============================================================================
# Cluster State
# ============================================================================


def _ensure_namespace(admin_api: k8s.ApiClient, name: str) -> None:
    """Create ``name`` and wait for its default service account.

    Pod admission rejects pods in a namespace whose default service account
    has not been created yet.
    """
    core = k8s.CoreV1Api(admin_api)
    with contextlib.suppress(k8s.ApiException):
        core.create_namespace(k8s.V1Namespace(metadata=k8s.V1ObjectMeta(name=name)))

    for _ in range(60):
        try:
            core.read_namespaced_service_account("default", name)
            return
        except k8s.ApiException:
            time.sleep(0.5)


@pytest.fixture(scope="session")
def target_namespaces(admin_api: k8s.ApiClient, suite_config: SuiteConfig) -> tuple[str, str]:
    """The privileged and unprivileged namespaces pods are created in."""
    scenarios = suite_config.scenarios
    for name in (scenarios.privileged_namespace, scenarios.unprivileged_namespace):
        _ensure_namespace(admin_api, name)
    return scenarios.privileged_namespace, scenarios.unprivileged_namespace


@pytest.fixture(scope="session")
def admin_project_binding(
    admin_api: k8s.ApiClient,
    suite_config: SuiteConfig,
    target_namespaces: tuple[str, str],
) -> str:
    """Let the dedicated-admin-project service account manage pods in the privileged namespace.

    Returns the service account's fully-qualified name.
    """
    project = suite_config.scenarios.project
    privileged = target_namespaces[0]
    _ensure_namespace(admin_api, project)
    k8s.CoreV1Api(admin_api).create_namespaced_service_account(
        project,
        k8s.V1ServiceAccount(
            metadata=k8s.V1ObjectMeta(name=fixtures.ADMIN_PROJECT_SERVICE_ACCOUNT)
        ),
    )
    k8s.RbacAuthorizationV1Api(admin_api).create_namespaced_role_binding(
        privileged,
        k8s.V1RoleBinding(
            metadata=k8s.V1ObjectMeta(name="dedicated-admin-project"),
            role_ref=k8s.V1RoleRef(
                api_group="rbac.authorization.k8s.io", kind="ClusterRole", name="admin"
            ),
            subjects=[
                k8s.RbacV1Subject(
                    kind="ServiceAccount",
                    name=fixtures.ADMIN_PROJECT_SERVICE_ACCOUNT,
                    namespace=project,
                )
            ],
        ),
    )
    return f"system:serviceaccount:{project}:{fixtures.ADMIN_PROJECT_SERVICE_ACCOUNT}"


@pytest.fixture(scope="session")
def webhook_objects(factory: IdentityFactory) -> None:
    """Stand-ins for the objects the webhook deployment creates."""
    ns = fixtures.WEBHOOK_NAMESPACE
    labels = {"app": fixtures.WEBHOOK_DAEMONSET}
    meta = k8s.V1ObjectMeta
    objects = [
        k8s.V1Namespace(kind="Namespace", metadata=meta(name=ns)),
        k8s.V1ConfigMap(
            kind="ConfigMap",
            metadata=meta(name=fixtures.WEBHOOK_CONFIGMAP, namespace=ns),
        ),
        k8s.V1Secret(
            kind="Secret",
            metadata=meta(name=fixtures.WEBHOOK_SECRET, namespace=ns),
            string_data={"tls.crt": "stub"},
        ),
        k8s.V1Service(
            kind="Service",
            metadata=meta(name=fixtures.WEBHOOK_SERVICE, namespace=ns),
            spec=k8s.V1ServiceSpec(
                selector=labels, ports=[k8s.V1ServicePort(port=443, target_port=8443)]
            ),
        ),
        k8s.V1DaemonSet(
            kind="DaemonSet",
            metadata=meta(name=fixtures.WEBHOOK_DAEMONSET, namespace=ns),
            spec=k8s.V1DaemonSetSpec(
                selector=k8s.V1LabelSelector(match_labels=labels),
                template=k8s.V1PodTemplateSpec(
                    metadata=meta(labels=labels),
                    spec=k8s.V1PodSpec(
                        containers=[k8s.V1Container(name="webhook", image=PAUSE_IMAGE)]
                    ),
                ),
            ),
        ),
    ]
    ambient = factory.ambient()
    for obj in objects:
        with contextlib.suppress(KubernetesConflictError):
            ambient.create(obj)
