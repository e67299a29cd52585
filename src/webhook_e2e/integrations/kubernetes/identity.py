"""Identity-scoped client construction.

An :class:`IdentityFactory` turns an actor description into a
:class:`~webhook_e2e.integrations.kubernetes.resources.ResourceClient` that
performs every request as that actor via API server impersonation. The factory
holds no "current identity"; each derived client carries its own.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from webhook_e2e.integrations.kubernetes.resources import ResourceClient

if TYPE_CHECKING:
    from webhook_e2e.integrations.kubernetes.client import KubernetesClient

logger = structlog.get_logger()

# Groups every impersonated user needs for the API server to treat it as logged in.
AUTHENTICATED_GROUP = "system:authenticated"
AUTHENTICATED_OAUTH_GROUP = "system:authenticated:oauth"
BASELINE_GROUPS: tuple[str, ...] = (AUTHENTICATED_GROUP, AUTHENTICATED_OAUTH_GROUP)

SERVICE_ACCOUNT_PATTERN = re.compile(
    r"^system:serviceaccount:(?P<namespace>[a-z0-9]([-a-z0-9]*[a-z0-9])?)"
    r":(?P<name>[a-z0-9]([-a-z0-9.]*[a-z0-9])?)$"
)


def _dedupe(groups: Iterable[str]) -> tuple[str, ...]:
    """Drop duplicates and blanks, keeping first-seen order."""
    return tuple(dict.fromkeys(g for g in groups if g))


class Identity(BaseModel):
    """The actor a request is made as.

    An empty principal means no impersonation: requests use the loaded
    credential unchanged. A non-empty principal always carries the two
    authenticated baseline groups, exactly once each.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    principal: str = ""
    groups: tuple[str, ...] = Field(default_factory=tuple)

    @model_validator(mode="before")
    @classmethod
    def ensure_baseline_groups(cls, data: Any) -> Any:
        """Union the baseline groups into impersonated identities."""
        if isinstance(data, dict):
            groups = tuple(data.get("groups") or ())
            if data.get("principal"):
                groups = (*groups, *BASELINE_GROUPS)
            data = {**data, "groups": _dedupe(groups)}
        return data

    @classmethod
    def ambient(cls) -> Identity:
        """The credential loaded from kubeconfig, without impersonation."""
        return cls()

    @classmethod
    def user(cls, principal: str, extra_groups: Iterable[str] = ()) -> Identity:
        """A named user with additional groups."""
        return cls(principal=principal, groups=tuple(extra_groups))

    @classmethod
    def service_account(cls, qualified_name: str) -> Identity:
        """A service account given as ``system:serviceaccount:<namespace>:<name>``.

        Raises:
            ValueError: If the name is not a fully-qualified service account.
        """
        if not SERVICE_ACCOUNT_PATTERN.match(qualified_name):
            raise ValueError(
                f"'{qualified_name}' is not of the form system:serviceaccount:<namespace>:<name>"
            )
        return cls(principal=qualified_name)

    @property
    def is_impersonated(self) -> bool:
        """Whether requests carry impersonation headers."""
        return bool(self.principal)

    @property
    def display_name(self) -> str:
        """Principal for logs and reports."""
        return self.principal or "<ambient>"

    def __str__(self) -> str:
        if not self.principal:
            return self.display_name
        return f"{self.principal} (groups: {', '.join(self.groups)})"


def service_account_name(namespace: str, name: str) -> str:
    """Build the fully-qualified username of a service account."""
    return f"system:serviceaccount:{namespace}:{name}"


class IdentityFactory:
    """Builds resource clients bound to a fixed identity.

    All derived clients share the underlying connection pool of ``client``
    but never share headers, so clients for different identities can be used
    from different threads at the same time.

    Example:
        >>> factory = IdentityFactory(KubernetesClient(config.cluster))
        >>> factory.for_user("majora").create(pod)
    """

    def __init__(self, client: KubernetesClient) -> None:
        """Initialize the factory.

        Args:
            client: Connection whose credentials and pool are reused.
        """
        self._client = client

    def for_identity(self, identity: Identity) -> ResourceClient:
        """Create a resource client acting as ``identity``.

        Raises:
            KubernetesConfigurationError: If the API client cannot be built.
        """
        logger.debug(
            "building_identity_client",
            principal=identity.display_name,
            groups=list(identity.groups),
        )
        return ResourceClient(
            self._client.api_client_for(identity),
            identity=identity,
            translate=self._client.translate_api_exception,
        )

    def ambient(self) -> ResourceClient:
        """Create a resource client using the loaded credential as-is."""
        return self.for_identity(Identity.ambient())

    def for_user(self, principal: str, extra_groups: Iterable[str] = ()) -> ResourceClient:
        """Create a resource client impersonating a user.

        Args:
            principal: Username to impersonate. Empty means no impersonation.
            extra_groups: Groups in addition to the authenticated baseline.
        """
        return self.for_identity(Identity.user(principal, extra_groups))

    def for_service_account(self, qualified_name: str) -> ResourceClient:
        """Create a resource client impersonating a service account.

        Args:
            qualified_name: ``system:serviceaccount:<namespace>:<name>``.

        Raises:
            ValueError: If ``qualified_name`` is malformed.
        """
        return self.for_identity(Identity.service_account(qualified_name))
