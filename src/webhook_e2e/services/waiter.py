"""Condition waiting for eventually-consistent cluster state.

:class:`ConditionWaiter` polls one object until a typed predicate holds, the
deadline passes, a non-retryable error occurs, or the caller cancels. It
returns an :data:`Outcome` instead of raising, so callers can tell a slow
rollout (:class:`Timeout`) apart from a broken cluster (:class:`FatalError`)
and from their own deadline firing (:class:`Cancelled`).

Example:
    >>> waiter = ConditionWaiter(factory.ambient())
    >>> outcome = waiter.wait_for_daemon_set("validation-webhook", "openshift-validation-webhook")
    >>> assert outcome.ok, outcome.describe()
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Generic, TypeVar

import structlog
from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_delay,
    stop_when_event_set,
    wait_fixed,
)

from webhook_e2e.integrations.kubernetes.exceptions import (
    KubernetesError,
    KubernetesNotFoundError,
    is_transient,
)
from webhook_e2e.integrations.kubernetes.models.workloads import DaemonSetSummary
from webhook_e2e.integrations.kubernetes.resources import ResourceRef

if TYPE_CHECKING:
    from webhook_e2e.integrations.kubernetes.resources import ResourceClient

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_POLL_INTERVAL = 2.0
DEFAULT_TIMEOUT = 300.0


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class Success(Generic[T]):
    """The predicate held; ``value`` is the parsed object it held for."""

    value: T
    elapsed: float = 0.0
    ok: ClassVar[bool] = True

    def describe(self) -> str:
        return f"condition met after {self.elapsed:.1f}s"


@dataclass(frozen=True)
class Timeout:
    """The deadline passed before the predicate held."""

    elapsed: float
    last_error: KubernetesError | None = None
    ok: ClassVar[bool] = False

    def describe(self) -> str:
        message = f"timed out after {self.elapsed:.1f}s"
        if self.last_error is not None:
            message += f" (last error: {self.last_error})"
        return message


@dataclass(frozen=True)
class TransientError:
    """A single poll failed in a way worth repeating."""

    cause: KubernetesError
    ok: ClassVar[bool] = False

    def describe(self) -> str:
        return f"transient error: {self.cause}"


@dataclass(frozen=True)
class FatalError:
    """A poll failed in a way that polling again cannot fix."""

    cause: BaseException
    ok: ClassVar[bool] = False

    def describe(self) -> str:
        return f"fatal error: {self.cause}"


@dataclass(frozen=True)
class Cancelled:
    """The caller's cancellation event fired before the predicate held."""

    elapsed: float
    ok: ClassVar[bool] = False

    def describe(self) -> str:
        return f"cancelled after {self.elapsed:.1f}s"


Outcome = Success[Any] | Timeout | TransientError | FatalError | Cancelled


# =============================================================================
# Wait specification
# =============================================================================


def _unchanged(obj: Any) -> Any:
    return obj


@dataclass(frozen=True)
class WaitSpec(Generic[T]):
    """What to poll, how to read it, and how long to keep trying.

    Attributes:
        ref: Object to fetch on every poll.
        predicate: Condition over the parsed object.
        timeout: Seconds before giving up.
        poll_interval: Seconds between polls; must be below ``timeout``.
        parse: Converts the fetched SDK object into the type ``predicate`` takes.
    """

    ref: ResourceRef
    predicate: Callable[[T], bool]
    timeout: float = DEFAULT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    parse: Callable[[Any], T] = field(default=_unchanged)

    def __post_init__(self) -> None:
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.poll_interval >= self.timeout:
            raise ValueError(
                f"poll_interval ({self.poll_interval}s) must be less than timeout ({self.timeout}s)"
            )


def daemon_set_ready(ds: DaemonSetSummary) -> bool:
    """Every desired daemon pod is scheduled, ready and available.

    A daemonset that wants zero pods is ready.
    """
    desired = ds.desired_number_scheduled
    return (
        ds.current_number_scheduled == desired
        and ds.number_ready == desired
        and ds.number_available == desired
    )


def daemon_set_wait_spec(
    name: str,
    namespace: str,
    timeout: float = DEFAULT_TIMEOUT,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
) -> WaitSpec[DaemonSetSummary]:
    """Build the spec that waits for a daemonset rollout to finish."""
    return WaitSpec(
        ref=ResourceRef(kind="DaemonSet", name=name, namespace=namespace),
        predicate=daemon_set_ready,
        timeout=timeout,
        poll_interval=poll_interval,
        parse=DaemonSetSummary.from_k8s_object,
    )


# =============================================================================
# Waiter
# =============================================================================


def _keep_polling(result: Outcome | None) -> bool:
    return result is None or isinstance(result, TransientError)


class ConditionWaiter:
    """Polls a resource until a predicate holds.

    NotFound counts as "not yet"; transient errors are retried; anything
    else ends the wait with :class:`FatalError` at once. The client itself
    never retries, so all retry policy lives here.
    """

    def __init__(self, client: ResourceClient, request_timeout: float | None = None) -> None:
        """Initialize the waiter.

        Args:
            client: Client used for every fetch.
            request_timeout: Per-request timeout in seconds, so a hung request
                cannot outlive the wait by much.
        """
        self._client = client
        self._request_timeout = request_timeout
        self._log = logger.bind(principal=client.identity.display_name)

    def wait_for(self, spec: WaitSpec[Any], cancel: threading.Event | None = None) -> Outcome:
        """Poll ``spec.ref`` until ``spec.predicate`` holds.

        Args:
            spec: What to poll and for how long.
            cancel: Set by the caller to abandon the wait. The poll sleep is
                interrupted immediately and no further request is sent.

        Returns:
            ``Success``, ``Timeout``, ``FatalError`` or ``Cancelled``.
        """
        cancel = cancel or threading.Event()
        started = time.monotonic()
        self._log.debug(
            "waiting_for_condition",
            ref=str(spec.ref),
            timeout=spec.timeout,
            poll_interval=spec.poll_interval,
        )

        def give_up(retry_state: RetryCallState) -> Outcome:
            elapsed = time.monotonic() - started
            if cancel.is_set():
                self._log.info("wait_cancelled", ref=str(spec.ref), elapsed=round(elapsed, 2))
                return Cancelled(elapsed=elapsed)
            last = retry_state.outcome.result() if retry_state.outcome else None
            last_error = last.cause if isinstance(last, TransientError) else None
            self._log.warning(
                "wait_timed_out",
                ref=str(spec.ref),
                elapsed=round(elapsed, 2),
                attempts=retry_state.attempt_number,
                last_error=str(last_error) if last_error else None,
            )
            return Timeout(elapsed=elapsed, last_error=last_error)

        retrying = Retrying(
            retry=retry_if_result(_keep_polling),
            stop=stop_after_delay(spec.timeout) | stop_when_event_set(cancel),
            wait=wait_fixed(spec.poll_interval),
            sleep=cancel.wait,
            retry_error_callback=give_up,
        )
        outcome: Outcome = retrying(self._poll_once, spec, cancel, started)
        return outcome

    def wait_for_daemon_set(
        self,
        name: str,
        namespace: str,
        timeout: float = DEFAULT_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        cancel: threading.Event | None = None,
    ) -> Outcome:
        """Wait until every desired pod of a daemonset is ready and available."""
        spec = daemon_set_wait_spec(name, namespace, timeout=timeout, poll_interval=poll_interval)
        return self.wait_for(spec, cancel=cancel)

    def _poll_once(
        self,
        spec: WaitSpec[Any],
        cancel: threading.Event,
        started: float,
    ) -> Outcome | None:
        """Run one fetch-and-evaluate step; None means "not yet"."""
        if cancel.is_set():
            return Cancelled(elapsed=time.monotonic() - started)

        try:
            obj = self._client.get(spec.ref, request_timeout=self._request_timeout)
        except KubernetesNotFoundError:
            self._log.debug("resource_not_found_yet", ref=str(spec.ref))
            return None
        except KubernetesError as e:
            if is_transient(e):
                self._log.debug("transient_poll_error", ref=str(spec.ref), error=str(e))
                return TransientError(cause=e)
            self._log.error("wait_failed", ref=str(spec.ref), error=str(e))
            return FatalError(cause=e)

        value = spec.parse(obj)
        if spec.predicate(value):
            elapsed = time.monotonic() - started
            self._log.info("wait_succeeded", ref=str(spec.ref), elapsed=round(elapsed, 2))
            return Success(value=value, elapsed=elapsed)

        self._log.debug("condition_not_met", ref=str(spec.ref), observed=_describe(value))
        return None


def _describe(value: Any) -> str:
    rollout = getattr(value, "rollout", None)
    return rollout if isinstance(rollout, str) else type(value).__name__
