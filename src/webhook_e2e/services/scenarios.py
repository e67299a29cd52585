"""Validating webhook scenarios.

Three scenarios run in order against one cluster:

- ``exists``: the webhook namespace, config map, secret and service exist and
  the webhook daemonset has finished rolling out.
- ``blocked``: pods tolerating master/infra taints are rejected for
  dedicated-admins and ordinary users, in privileged and unprivileged
  namespaces alike.
- ``allowed``: the same pod is accepted from the dedicated-admin-project
  service account.

Every scenario runs under its own deadline. When the deadline fires, in-flight
waits return promptly and the remaining steps, cleanup included, are recorded
as skipped rather than attempted.
"""

from __future__ import annotations

import threading
import time
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, Field

from webhook_e2e.integrations.kubernetes.exceptions import (
    KubernetesConflictError,
    KubernetesError,
    KubernetesNotFoundError,
)
from webhook_e2e.integrations.kubernetes.identity import Identity, service_account_name
from webhook_e2e.integrations.kubernetes.models import PodSummary
from webhook_e2e.integrations.kubernetes.resources import ResourceRef
from webhook_e2e.services import fixtures
from webhook_e2e.services.waiter import ConditionWaiter, Success, daemon_set_wait_spec

if TYPE_CHECKING:
    from collections.abc import Iterable

    from webhook_e2e.integrations.kubernetes.config import SuiteConfig
    from webhook_e2e.integrations.kubernetes.identity import IdentityFactory
    from webhook_e2e.integrations.kubernetes.resources import ResourceClient

logger = structlog.get_logger()

# Extra time the existence scenario gets on top of the daemonset wait.
EXISTENCE_SLACK_SECONDS = 60.0

CREATED = "Created"
DELETED = "Deleted"
FORBIDDEN = "Forbidden"
NOT_FOUND = "NotFound"
FOUND = "Found"
READY = "Ready"


class CheckStatus(StrEnum):
    """Result of one assertion."""

    PASSED = "passed"
    FAILED = "failed"
    SKIPPED = "skipped"


class CheckResult(BaseModel):
    """One assertion, with enough context to diagnose a failure."""

    description: str
    status: CheckStatus
    actor: str = Field(default="<ambient>", description="Principal the request was made as")
    resource: str = Field(description="Kind and name of the object involved")
    namespace: str | None = None
    expected: str
    observed: str
    message: str = ""

    @property
    def summary(self) -> str:
        """One-line description of the assertion and its outcome."""
        text = (
            f"{self.description}: expected {self.expected}, observed {self.observed} "
            f"(actor={self.actor}, namespace={self.namespace or '-'})"
        )
        if self.message:
            text += f": {self.message}"
        return text


class ScenarioResult(BaseModel):
    """All assertions of one scenario."""

    name: str
    title: str
    checks: list[CheckResult] = Field(default_factory=list)
    cancelled: bool = False
    duration: float = 0.0

    @property
    def failures(self) -> list[CheckResult]:
        """Checks that did not pass."""
        return [c for c in self.checks if c.status == CheckStatus.FAILED]

    @property
    def passed(self) -> bool:
        """True when nothing failed and the deadline did not fire."""
        return not self.cancelled and not self.failures


class Deadline:
    """Scenario deadline backed by a cancellation event.

    A timer sets :attr:`cancel` when the deadline passes; waits that share
    the event stop promptly.
    """

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds
        self.cancel = threading.Event()
        self._expires_at = 0.0
        self._timer: threading.Timer | None = None

    def __enter__(self) -> Deadline:
        self._expires_at = time.monotonic() + self.seconds
        self._timer = threading.Timer(self.seconds, self.cancel.set)
        self._timer.daemon = True
        self._timer.start()
        return self

    def __exit__(self, *args: Any) -> None:
        if self._timer is not None:
            self._timer.cancel()

    @property
    def expired(self) -> bool:
        """Whether the deadline has fired."""
        return self.cancel.is_set() or self.remaining() <= 0

    def remaining(self) -> float:
        """Seconds left before the deadline."""
        return max(0.0, self._expires_at - time.monotonic())


class ScenarioRunner:
    """Runs the webhook scenarios with identity-bound clients.

    Example:
        >>> runner = ScenarioRunner(IdentityFactory(client), SuiteConfig.from_env())
        >>> results = runner.run()
        >>> assert all(r.passed for r in results)
    """

    SCENARIOS: tuple[str, ...] = ("exists", "blocked", "allowed")

    def __init__(self, factory: IdentityFactory, config: SuiteConfig) -> None:
        """Initialize the runner.

        Args:
            factory: Source of identity-bound clients.
            config: Suite configuration (timeouts, namespaces, project).
        """
        self._factory = factory
        self._config = config
        self._log = logger.bind(entity="scenario")

    def run(self, names: Iterable[str] | None = None) -> list[ScenarioResult]:
        """Run the named scenarios (all by default) in their fixed order.

        Raises:
            ValueError: If an unknown scenario name is given.
            KubernetesConfigurationError: If a client cannot be constructed.
        """
        selected = list(names) if names else list(self.SCENARIOS)
        unknown = sorted(set(selected) - set(self.SCENARIOS))
        if unknown:
            raise ValueError(f"Unknown scenario(s): {', '.join(unknown)}")

        runners = {
            "exists": self.exists,
            "blocked": self.pods_blocked,
            "allowed": self.pods_allowed,
        }
        return [runners[name]() for name in self.SCENARIOS if name in selected]

    # =========================================================================
    # Scenarios
    # =========================================================================

    def exists(self) -> ScenarioResult:
        """The webhook's fixed objects exist and its daemonset is rolled out."""
        result = ScenarioResult(name="exists", title="exists and is running")
        timeout = self._config.wait.daemonset_timeout + EXISTENCE_SLACK_SECONDS
        started = time.monotonic()

        with Deadline(timeout) as deadline:
            client = self._factory.ambient()
            refs = [
                ResourceRef(kind="Namespace", name=fixtures.WEBHOOK_NAMESPACE),
                ResourceRef(
                    kind="ConfigMap",
                    name=fixtures.WEBHOOK_CONFIGMAP,
                    namespace=fixtures.WEBHOOK_NAMESPACE,
                ),
                ResourceRef(
                    kind="Secret",
                    name=fixtures.WEBHOOK_SECRET,
                    namespace=fixtures.WEBHOOK_NAMESPACE,
                ),
                ResourceRef(
                    kind="Service",
                    name=fixtures.WEBHOOK_SERVICE,
                    namespace=fixtures.WEBHOOK_NAMESPACE,
                ),
            ]
            for ref in refs:
                description = f"{ref.kind} {ref.name} exists"
                if deadline.expired:
                    result.checks.append(self._skipped(description, client, ref, FOUND))
                    continue
                result.checks.append(self._expect_exists(description, client, ref, deadline))

            result.checks.append(self._expect_daemon_set_ready(client, deadline))
            result.cancelled = deadline.cancel.is_set()

        result.duration = time.monotonic() - started
        self._report(result)
        return result

    def pods_blocked(self) -> ScenarioResult:
        """Pods tolerating master/infra taints are rejected for non-admin actors."""
        result = ScenarioResult(
            name="blocked",
            title="created pods scheduled onto master and infra nodes are blocked",
        )
        scenarios = self._config.scenarios
        pod = fixtures.new_test_pod(fixtures.random_name(), image=scenarios.pod_image)
        dedicated_admin = Identity.user(
            fixtures.DEDICATED_ADMIN_USER, [fixtures.DEDICATED_ADMIN_GROUP]
        )
        arbitrary_user = Identity.user(fixtures.ARBITRARY_USER)
        probes = [
            (
                "dedicated-admin creates pod in privileged namespace",
                dedicated_admin,
                scenarios.privileged_namespace,
            ),
            (
                "random user creates pod in privileged namespace",
                arbitrary_user,
                scenarios.privileged_namespace,
            ),
            (
                "random user creates pod in unprivileged namespace",
                arbitrary_user,
                scenarios.unprivileged_namespace,
            ),
        ]
        started = time.monotonic()

        with Deadline(scenarios.authorization_timeout) as deadline:
            attempted: list[Any] = []
            aborted = False
            for description, identity, namespace in probes:
                placed = fixtures.with_namespace(pod, namespace)
                client = self._factory.for_identity(identity)
                if aborted or deadline.expired:
                    ref = ResourceRef.from_object(placed)
                    result.checks.append(self._skipped(description, client, ref, FORBIDDEN))
                    continue
                attempted.append(placed)
                check = self._expect_create(description, client, placed, FORBIDDEN, deadline)
                result.checks.append(check)
                # A name collision means another run shares our objects.
                aborted = check.observed == "Conflict"

            result.checks.extend(self._cleanup(self._factory.ambient(), attempted, deadline))
            result.cancelled = deadline.cancel.is_set()

        result.duration = time.monotonic() - started
        self._report(result)
        return result

    def pods_allowed(self) -> ScenarioResult:
        """The dedicated-admin-project service account may create the pod."""
        result = ScenarioResult(
            name="allowed",
            title="created pods scheduled onto master and infra nodes are allowed",
        )
        scenarios = self._config.scenarios
        pod = fixtures.new_test_pod(fixtures.random_name(), image=scenarios.pod_image)
        placed = fixtures.with_namespace(pod, scenarios.privileged_namespace)
        service_account = service_account_name(
            scenarios.project, fixtures.ADMIN_PROJECT_SERVICE_ACCOUNT
        )
        started = time.monotonic()

        with Deadline(scenarios.authorization_timeout) as deadline:
            client = self._factory.for_service_account(service_account)
            result.checks.append(
                self._expect_create(
                    "dedicated-admin-project service account creates pod in privileged namespace",
                    client,
                    placed,
                    CREATED,
                    deadline,
                )
            )
            result.checks.extend(self._cleanup(self._factory.ambient(), [placed], deadline))
            result.cancelled = deadline.cancel.is_set()

        result.duration = time.monotonic() - started
        self._report(result)
        return result

    # =========================================================================
    # Steps
    # =========================================================================

    def _request_timeout(self, deadline: Deadline) -> float:
        return min(float(self._config.cluster.timeout), max(deadline.remaining(), 0.001))

    def _expect_exists(
        self,
        description: str,
        client: ResourceClient,
        ref: ResourceRef,
        deadline: Deadline,
    ) -> CheckResult:
        try:
            client.get(ref, request_timeout=self._request_timeout(deadline))
        except KubernetesError as e:
            return self._check(
                description, client, ref, FOUND, e.kind, CheckStatus.FAILED, str(e)
            )
        return self._check(description, client, ref, FOUND, FOUND, CheckStatus.PASSED)

    def _expect_daemon_set_ready(self, client: ResourceClient, deadline: Deadline) -> CheckResult:
        wait = self._config.wait
        spec = daemon_set_wait_spec(
            fixtures.WEBHOOK_DAEMONSET,
            fixtures.WEBHOOK_NAMESPACE,
            timeout=wait.daemonset_timeout,
            poll_interval=wait.poll_interval,
        )
        description = f"DaemonSet {spec.ref.name} is available"
        if deadline.expired:
            return self._skipped(description, client, spec.ref, READY)

        waiter = ConditionWaiter(client, request_timeout=self._request_timeout(deadline))
        outcome = waiter.wait_for(spec, cancel=deadline.cancel)
        if isinstance(outcome, Success):
            return self._check(
                description,
                client,
                spec.ref,
                READY,
                READY,
                CheckStatus.PASSED,
                f"desired/current/ready/available {outcome.value.rollout}",
            )
        return self._check(
            description,
            client,
            spec.ref,
            READY,
            type(outcome).__name__,
            CheckStatus.SKIPPED if deadline.cancel.is_set() else CheckStatus.FAILED,
            outcome.describe(),
        )

    def _expect_create(
        self,
        description: str,
        client: ResourceClient,
        obj: Any,
        expected: str,
        deadline: Deadline,
    ) -> CheckResult:
        ref = ResourceRef.from_object(obj)
        message = ""
        try:
            created = client.create(obj, request_timeout=self._request_timeout(deadline))
            observed = CREATED
            if ref.kind == "Pod":
                message = _describe_pod(created)
        except KubernetesConflictError as e:
            observed = e.kind
            message = f"{e}; randomized test names collided, results are unreliable"
        except KubernetesError as e:
            observed = e.kind
            message = str(e)

        status = CheckStatus.PASSED if observed == expected else CheckStatus.FAILED
        return self._check(description, client, ref, expected, observed, status, message)

    def _cleanup(
        self,
        client: ResourceClient,
        objects: list[Any],
        deadline: Deadline,
    ) -> list[CheckResult]:
        """Delete every object a create was attempted for.

        NotFound is the normal result for rejected creates. Any other error
        fails the scenario.
        """
        checks = []
        seen: set[ResourceRef] = set()
        for obj in objects:
            ref = ResourceRef.from_object(obj)
            if ref in seen:
                continue
            seen.add(ref)
            description = f"clean up {ref}"
            if deadline.expired:
                checks.append(self._skipped(description, client, ref, DELETED))
                continue
            try:
                client.delete(ref, request_timeout=self._request_timeout(deadline))
                observed, status, message = DELETED, CheckStatus.PASSED, ""
            except KubernetesNotFoundError:
                observed, status, message = NOT_FOUND, CheckStatus.PASSED, ""
            except KubernetesError as e:
                observed, status, message = e.kind, CheckStatus.FAILED, str(e)
            checks.append(
                self._check(
                    description,
                    client,
                    ref,
                    f"{DELETED} or {NOT_FOUND}",
                    observed,
                    status,
                    message,
                )
            )
        return checks

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _check(
        description: str,
        client: ResourceClient,
        ref: ResourceRef,
        expected: str,
        observed: str,
        status: CheckStatus,
        message: str = "",
    ) -> CheckResult:
        return CheckResult(
            description=description,
            status=status,
            actor=client.identity.display_name,
            resource=f"{ref.kind}/{ref.name}",
            namespace=ref.namespace,
            expected=expected,
            observed=observed,
            message=message,
        )

    def _skipped(
        self,
        description: str,
        client: ResourceClient,
        ref: ResourceRef,
        expected: str,
    ) -> CheckResult:
        return self._check(
            description,
            client,
            ref,
            expected,
            "-",
            CheckStatus.SKIPPED,
            "scenario deadline exceeded",
        )

    def _report(self, result: ScenarioResult) -> None:
        for check in result.failures:
            self._log.error("check_failed", scenario=result.name, detail=check.summary)
        self._log.info(
            "scenario_finished",
            scenario=result.name,
            passed=result.passed,
            cancelled=result.cancelled,
            checks=len(result.checks),
            duration=round(result.duration, 2),
        )


def _describe_pod(pod: Any) -> str:
    """Summarize where an admitted pod may be scheduled."""
    summary = PodSummary.from_k8s_object(pod)
    tolerations = ", ".join(f"{t.key}:{t.effect}" for t in summary.tolerations if t.key)
    return f"admitted in phase {summary.phase} tolerating {tolerations or 'nothing'}"
