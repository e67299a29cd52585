"""Well-known names and test object builders."""

from __future__ import annotations

import copy
import secrets

from kubernetes import client

# Webhook infrastructure
WEBHOOK_NAMESPACE = "openshift-validation-webhook"
WEBHOOK_SERVICE = "validation-webhook"
WEBHOOK_DAEMONSET = "validation-webhook"
WEBHOOK_CONFIGMAP = "webhook-cert"
WEBHOOK_SECRET = "webhook-cert"

# Actors
DEDICATED_ADMIN_USER = "test-user@redhat.com"
DEDICATED_ADMIN_GROUP = "dedicated-admins"
ARBITRARY_USER = "majora"
ADMIN_PROJECT_SERVICE_ACCOUNT = "dedicated-admin-project"

# Test pod
TEST_POD_PREFIX = "osde2e"
TEST_POD_NAME_LENGTH = 12
TEST_POD_IMAGE = "registry.access.redhat.com/ubi8/ubi-minimal"
MASTER_ROLE_TAINT = "node-role.kubernetes.io/master"
INFRA_ROLE_TAINT = "node-role.kubernetes.io/infra"


def random_name(prefix: str = TEST_POD_PREFIX, length: int = TEST_POD_NAME_LENGTH) -> str:
    """Return ``prefix-<hex>`` cut to ``length`` characters.

    A prefix that already fills ``length`` is returned as-is.
    """
    if len(prefix) >= length:
        return prefix
    return f"{prefix}-{secrets.token_hex(length)}"[:length]


def new_test_pod(name: str, image: str = TEST_POD_IMAGE) -> client.V1Pod:
    """Build a pod that tolerates the master and infra node-role taints."""
    return client.V1Pod(
        api_version="v1",
        kind="Pod",
        metadata=client.V1ObjectMeta(name=name),
        spec=client.V1PodSpec(
            containers=[client.V1Container(name="test", image=image)],
            tolerations=[
                client.V1Toleration(
                    key=MASTER_ROLE_TAINT,
                    value="toleration-key-value",
                    effect="NoSchedule",
                ),
                client.V1Toleration(
                    key=INFRA_ROLE_TAINT,
                    value="toleration-key-value2",
                    effect="NoSchedule",
                ),
            ],
        ),
    )


def with_namespace(pod: client.V1Pod, namespace: str) -> client.V1Pod:
    """Return a copy of ``pod`` placed in ``namespace``."""
    placed = copy.deepcopy(pod)
    placed.metadata.namespace = namespace
    return placed
