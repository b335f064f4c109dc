"""Typed views over raw Kubernetes API objects."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

DEPLOYMENT = "Deployment"
STATEFUL_SET = "StatefulSet"
DAEMON_SET = "DaemonSet"
REPLICA_SET = "ReplicaSet"

# Kind -> apps/v1 resource name
WORKLOAD_RESOURCES: dict[str, str] = {
    DEPLOYMENT: "deployments",
    STATEFUL_SET: "statefulsets",
    DAEMON_SET: "daemonsets",
    REPLICA_SET: "replicasets",
}


@dataclass(frozen=True)
class WorkloadRef:
    """A restart target, identified by kind and name."""

    kind: str
    name: str

    @property
    def key(self) -> str:
        return f"{self.kind}/{self.name}"

    def __str__(self) -> str:
        return self.key


def object_name(obj: dict[str, Any]) -> str:
    return str(obj.get("metadata", {}).get("name", ""))


def owner_references(obj: dict[str, Any]) -> list[WorkloadRef]:
    """Return an object's owner references in API order."""
    refs = obj.get("metadata", {}).get("ownerReferences") or []
    return [
        WorkloadRef(kind=str(ref.get("kind", "")), name=str(ref.get("name", ""))) for ref in refs
    ]
