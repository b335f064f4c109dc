"""Workload restarts after an update.

Pods matching the selector are mapped to the workload that owns them,
and each distinct workload is restarted once per cycle:

- Deployments, StatefulSets and DaemonSets get the
  ``kubectl.kubernetes.io/restartedAt`` template annotation bumped, which
  starts the platform's own rolling update.
- Bare ReplicaSets are scaled to zero and back.

Ownership is flattened exactly one level (Pod -> ReplicaSet -> owner).
Deeper chains are not walked.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from steam_update_controller.k8s.client import (
    KubeApiError,
    KubeClient,
    UnsupportedWorkloadKindError,
)
from steam_update_controller.k8s.models import (
    DAEMON_SET,
    DEPLOYMENT,
    REPLICA_SET,
    STATEFUL_SET,
    WorkloadRef,
    object_name,
    owner_references,
)
from steam_update_controller.logging import get_logger

log = get_logger("steam_update_controller.controller.restart")

RESTARTED_AT_ANNOTATION = "kubectl.kubernetes.io/restartedAt"
ROLLING_RESTART_KINDS = frozenset({DEPLOYMENT, STATEFUL_SET, DAEMON_SET})
DEFAULT_GRACE_PERIOD_SECONDS = 2.0


class RestartError(Exception):
    """Base class for restart failures."""


class NoOwnerError(RestartError):
    """Raised when a pod has no owner references."""


class RestartFailedError(RestartError):
    """Raised when pods were found but no workload could be restarted."""

    def __init__(self, message: str, failed: list[str] | None = None) -> None:
        super().__init__(message)
        self.failed = failed or []


@dataclass
class RestartSummary:
    """Outcome of restarting the workloads behind a set of pods."""

    pods_found: int = 0
    restarted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    unresolved: list[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.restarted) and bool(self.failed or self.unresolved)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pods_found": self.pods_found,
            "restarted": self.restarted,
            "failed": self.failed,
            "unresolved": self.unresolved,
            "degraded": self.degraded,
        }


class WorkloadRestarter:
    """Resolves pod owners and restarts them with the right strategy."""

    def __init__(
        self,
        kube: KubeClient,
        grace_period: float = DEFAULT_GRACE_PERIOD_SECONDS,
    ) -> None:
        self._kube = kube
        self._grace_period = grace_period

    # ------------------------------------------------------------------
    # Owner resolution
    # ------------------------------------------------------------------

    async def resolve_owner(self, pod: dict[str, Any]) -> WorkloadRef:
        """Return the workload that owns ``pod``.

        A ReplicaSet owner is replaced by its own first owner (usually a
        Deployment). If the ReplicaSet cannot be fetched or has no owner,
        the ReplicaSet itself is returned.
        """
        owners = owner_references(pod)
        if not owners:
            raise NoOwnerError(f"pod {object_name(pod)} has no owner references")

        owner = owners[0]
        if owner.kind != REPLICA_SET:
            return owner

        try:
            replica_set = await self._kube.get_workload(REPLICA_SET, owner.name)
        except KubeApiError as exc:
            log.debug("replicaset_owner_lookup_failed", replicaset=owner.name, error=str(exc))
            return owner

        parents = owner_references(replica_set)
        if parents:
            return parents[0]
        return owner

    # ------------------------------------------------------------------
    # Restart strategies
    # ------------------------------------------------------------------

    async def restart_workload(self, ref: WorkloadRef) -> None:
        """Restart a single workload according to its kind."""
        if ref.kind in ROLLING_RESTART_KINDS:
            await self._rolling_restart(ref)
        elif ref.kind == REPLICA_SET:
            await self._scale_cycle(ref)
        else:
            raise UnsupportedWorkloadKindError(f"unsupported workload kind: {ref.kind}")

    async def _rolling_restart(self, ref: WorkloadRef) -> None:
        obj = await self._kube.get_workload(ref.kind, ref.name)

        template = obj.setdefault("spec", {}).setdefault("template", {})
        template_meta = template.setdefault("metadata", {})
        annotations = template_meta.get("annotations") or {}
        annotations[RESTARTED_AT_ANNOTATION] = datetime.now(UTC).isoformat(timespec="seconds")
        template_meta["annotations"] = annotations

        await self._kube.update_workload(ref.kind, obj)
        log.debug("restart_annotation_set", workload=ref.key)

    async def _scale_cycle(self, ref: WorkloadRef) -> None:
        """Scale a ReplicaSet to zero and back to its original size.

        Not atomic: if something else changes the replica count during
        the grace period, the count observed before scaling down still
        wins. The restore carries the re-read resourceVersion, so a write
        that lands between the re-read and the restore raises
        ConflictError.
        """
        obj = await self._kube.get_workload(ref.kind, ref.name)
        original = int(obj.get("spec", {}).get("replicas", 1))

        scaled_down = copy.deepcopy(obj)
        scaled_down.setdefault("spec", {})["replicas"] = 0
        await self._kube.update_workload(ref.kind, scaled_down)
        log.debug("replicaset_scaled_down", workload=ref.key, original_replicas=original)

        await asyncio.sleep(self._grace_period)

        current = await self._kube.get_workload(ref.kind, ref.name)
        current.setdefault("spec", {})["replicas"] = original
        await self._kube.update_workload(ref.kind, current)
        log.debug("replicaset_scaled_up", workload=ref.key, replicas=original)

    # ------------------------------------------------------------------
    # Pods -> workloads
    # ------------------------------------------------------------------

    async def restart_pods(self, selector: str) -> RestartSummary:
        """Restart every distinct workload owning a pod that matches ``selector``.

        Per-workload failures are logged and skipped. Raises
        RestartFailedError only if pods exist and none of their workloads
        could be restarted.
        """
        log.info("finding_pods", selector=selector)
        pods = await self._kube.list_pods(selector)

        summary = RestartSummary(pods_found=len(pods))
        if not pods:
            log.warning("no_pods_found", selector=selector)
            return summary

        log.info("pods_found", count=len(pods))

        seen: set[str] = set()
        for pod in pods:
            pod_name = object_name(pod)
            try:
                ref = await self.resolve_owner(pod)
            except RestartError as exc:
                log.warning("pod_owner_unresolved", pod=pod_name, error=str(exc))
                summary.unresolved.append(pod_name)
                continue

            if ref.key in seen:
                log.debug("workload_already_handled", workload=ref.key, pod=pod_name)
                continue
            seen.add(ref.key)

            log.info("restarting_workload", workload=ref.key)
            try:
                await self.restart_workload(ref)
            except (KubeApiError, UnsupportedWorkloadKindError) as exc:
                log.error("workload_restart_failed", workload=ref.key, error=str(exc))
                summary.failed.append(ref.key)
                continue

            summary.restarted.append(ref.key)
            log.info("workload_restart_initiated", workload=ref.key)

        if not summary.restarted:
            raise RestartFailedError("failed to restart any workloads", failed=summary.failed)

        if summary.degraded:
            log.warning(
                "workload_restart_degraded",
                restarted=len(summary.restarted),
                failed=summary.failed,
                unresolved=summary.unresolved,
            )
        else:
            log.info("workloads_restarted", count=len(summary.restarted))
        return summary
