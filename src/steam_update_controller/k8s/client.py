"""Kubernetes API client wrapper.

Provides async methods for the handful of calls the controller needs:
listing pods by label selector and reading/replacing apps/v1 workloads
in a single namespace. API errors are raised, never swallowed; 404 and
409 get their own exception types.
"""

from __future__ import annotations

from types import TracebackType
from typing import Any

import httpx

from steam_update_controller.k8s.config import ClusterConfig
from steam_update_controller.k8s.models import WORKLOAD_RESOURCES, object_name
from steam_update_controller.logging import get_logger

log = get_logger("steam_update_controller.k8s.client")

DEFAULT_TIMEOUT = 30.0


class KubeApiError(Exception):
    """Raised when a Kubernetes API call fails."""

    def __init__(self, message: str, status_code: int | None = None, reason: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


class NotFoundError(KubeApiError):
    """The requested object does not exist (HTTP 404)."""


class ConflictError(KubeApiError):
    """The object changed since it was read (HTTP 409)."""


class UnsupportedWorkloadKindError(ValueError):
    """Raised for workload kinds the controller cannot restart."""


def _raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return

    reason = ""
    message = response.text
    try:
        status = response.json()
    except ValueError:
        status = None
    if isinstance(status, dict):
        reason = str(status.get("reason", ""))
        message = str(status.get("message", message))

    error = f"Kubernetes API error {response.status_code}: {message}"
    if response.status_code == 404:
        raise NotFoundError(error, response.status_code, reason)
    if response.status_code == 409:
        raise ConflictError(error, response.status_code, reason)
    raise KubeApiError(error, response.status_code, reason)


def workload_path(namespace: str, kind: str, name: str) -> str:
    resource = WORKLOAD_RESOURCES.get(kind)
    if resource is None:
        raise UnsupportedWorkloadKindError(f"unsupported workload kind: {kind}")
    return f"/apis/apps/v1/namespaces/{namespace}/{resource}/{name}"


class KubeClient:
    """Async Kubernetes API client bound to one namespace."""

    def __init__(
        self,
        config: ClusterConfig,
        namespace: str,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: API server address, TLS settings and credentials.
            namespace: Namespace every call is scoped to.
            timeout: HTTP request timeout in seconds.
            transport: Optional transport override, used by tests.
        """
        if not namespace:
            raise ValueError("namespace is required")
        self._namespace = namespace
        self._client = httpx.AsyncClient(
            base_url=config.server,
            verify=config.verify,
            auth=config.auth,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    @property
    def namespace(self) -> str:
        return self._namespace

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> KubeClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            response = await self._client.request(method, path, params=params, json=json_data)
        except httpx.RequestError as exc:
            raise KubeApiError(f"Kubernetes API request failed: {exc}") from exc
        except OSError as exc:
            # Raised from BearerTokenAuth when the token file is unreadable
            raise KubeApiError(f"failed to read Kubernetes API credentials: {exc}") from exc

        _raise_for_status(response)
        result: dict[str, Any] = response.json()
        return result

    # ------------------------------------------------------------------
    # Pods
    # ------------------------------------------------------------------

    async def list_pods(self, selector: str) -> list[dict[str, Any]]:
        """List pods in the namespace matching a label selector."""
        data = await self._request(
            "GET",
            f"/api/v1/namespaces/{self._namespace}/pods",
            params={"labelSelector": selector},
        )
        pods: list[dict[str, Any]] = data.get("items") or []
        log.debug("pods_listed", selector=selector, count=len(pods))
        return pods

    # ------------------------------------------------------------------
    # Workloads
    # ------------------------------------------------------------------

    async def get_workload(self, kind: str, name: str) -> dict[str, Any]:
        """Fetch a Deployment, StatefulSet, DaemonSet or ReplicaSet."""
        return await self._request("GET", workload_path(self._namespace, kind, name))

    async def update_workload(self, kind: str, obj: dict[str, Any]) -> dict[str, Any]:
        """Replace a workload with ``obj``.

        The object's ``metadata.resourceVersion`` is sent along, so a
        concurrent modification raises ConflictError.
        """
        name = object_name(obj)
        if not name:
            raise ValueError("workload object has no metadata.name")
        updated = await self._request(
            "PUT",
            workload_path(self._namespace, kind, name),
            json_data=obj,
        )
        log.debug("workload_updated", kind=kind, name=name)
        return updated
