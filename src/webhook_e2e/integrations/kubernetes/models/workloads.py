"""Typed views of workload resources."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from webhook_e2e.integrations.kubernetes.models.base import K8sEntityBase, _safe_get


class DaemonSetSummary(K8sEntityBase):
    """DaemonSet rollout counters."""

    desired_number_scheduled: int = Field(default=0, description="Desired pods")
    current_number_scheduled: int = Field(default=0, description="Current pods")
    number_ready: int = Field(default=0, description="Ready pods")
    number_available: int = Field(default=0, description="Available pods")
    updated_number_scheduled: int = Field(default=0, description="Pods on the latest template")

    @classmethod
    def from_k8s_object(cls, obj: Any) -> DaemonSetSummary:
        """Create from a kubernetes V1DaemonSet object."""
        return cls(
            **cls._metadata_fields(obj),
            desired_number_scheduled=_safe_get(obj, "status", "desired_number_scheduled", default=0)
            or 0,
            current_number_scheduled=_safe_get(obj, "status", "current_number_scheduled", default=0)
            or 0,
            number_ready=_safe_get(obj, "status", "number_ready", default=0) or 0,
            number_available=_safe_get(obj, "status", "number_available", default=0) or 0,
            updated_number_scheduled=_safe_get(obj, "status", "updated_number_scheduled", default=0)
            or 0,
        )

    @property
    def rollout(self) -> str:
        """Counters formatted as desired/current/ready/available."""
        return (
            f"{self.desired_number_scheduled}/{self.current_number_scheduled}/"
            f"{self.number_ready}/{self.number_available}"
        )


class Toleration(BaseModel):
    """Pod toleration."""

    model_config = ConfigDict(extra="ignore")

    key: str | None = None
    value: str | None = None
    effect: str | None = None

    @classmethod
    def from_k8s_object(cls, obj: Any) -> Toleration:
        """Create from a kubernetes V1Toleration object."""
        return cls(
            key=getattr(obj, "key", None),
            value=getattr(obj, "value", None),
            effect=getattr(obj, "effect", None),
        )


class PodSummary(K8sEntityBase):
    """Pod placement view."""

    phase: str = Field(default="Unknown", description="Pod phase")
    node_name: str | None = Field(default=None, description="Node the pod is running on")
    tolerations: list[Toleration] = Field(default_factory=list, description="Tolerations")

    @classmethod
    def from_k8s_object(cls, obj: Any) -> PodSummary:
        """Create from a kubernetes V1Pod object."""
        tolerations = _safe_get(obj, "spec", "tolerations") or []
        return cls(
            **cls._metadata_fields(obj),
            phase=_safe_get(obj, "status", "phase", default="Unknown"),
            node_name=_safe_get(obj, "spec", "node_name"),
            tolerations=[Toleration.from_k8s_object(t) for t in tolerations],
        )
