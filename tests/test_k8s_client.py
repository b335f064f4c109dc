"""Tests for steam_update_controller.k8s.client using httpx.MockTransport."""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from steam_update_controller.k8s.client import (
    ConflictError,
    KubeApiError,
    KubeClient,
    NotFoundError,
    UnsupportedWorkloadKindError,
)
from steam_update_controller.k8s.config import BearerTokenAuth, ClusterConfig

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _workload(kind: str, name: str, resource_version: str = "1") -> dict[str, Any]:
    return {
        "apiVersion": "apps/v1",
        "kind": kind,
        "metadata": {"name": name, "namespace": "games", "resourceVersion": resource_version},
        "spec": {"replicas": 1},
    }


def _make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    namespace: str = "games",
) -> KubeClient:
    config = ClusterConfig(
        server="https://kube.example:6443",
        auth=BearerTokenAuth(token="test-token"),
    )
    return KubeClient(config, namespace, transport=httpx.MockTransport(handler))


def _status(code: int, reason: str, message: str) -> httpx.Response:
    return httpx.Response(
        code,
        json={
            "kind": "Status",
            "status": "Failure",
            "reason": reason,
            "message": message,
            "code": code,
        },
    )


# ---------------------------------------------------------------------------
# list_pods
# ---------------------------------------------------------------------------


class TestListPods:
    """Tests for list_pods()."""

    async def test_lists_by_selector(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"items": [{"metadata": {"name": "tf2-0"}}]})

        async with _make_client(handler) as client:
            pods = await client.list_pods("app=tf2-server")

        assert [p["metadata"]["name"] for p in pods] == ["tf2-0"]
        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/api/v1/namespaces/games/pods"
        assert request.url.params["labelSelector"] == "app=tf2-server"
        assert request.headers["Authorization"] == "Bearer test-token"

    async def test_empty_list(self) -> None:
        async with _make_client(lambda r: httpx.Response(200, json={"items": None})) as client:
            assert await client.list_pods("app=x") == []

    async def test_server_error_raises(self) -> None:
        handler = lambda r: _status(500, "InternalError", "etcd unavailable")  # noqa: E731
        async with _make_client(handler) as client:
            with pytest.raises(KubeApiError, match="etcd unavailable") as exc_info:
                await client.list_pods("app=x")
        assert exc_info.value.status_code == 500
        assert exc_info.value.reason == "InternalError"

    async def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _make_client(handler) as client:
            with pytest.raises(KubeApiError, match="request failed"):
                await client.list_pods("app=x")

    async def test_unreadable_token_file_raises(self, tmp_path: Path) -> None:
        sent: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(request)
            return httpx.Response(200, json={"items": []})

        config = ClusterConfig(
            server="https://kube.example:6443",
            auth=BearerTokenAuth(token_file=tmp_path / "rotated-away"),
        )
        transport = httpx.MockTransport(handler)

        async with KubeClient(config, "games", transport=transport) as client:
            with pytest.raises(KubeApiError, match="credentials") as exc_info:
                await client.list_pods("app=x")

        assert isinstance(exc_info.value.__cause__, FileNotFoundError)
        assert exc_info.value.status_code is None
        assert sent == []


# ---------------------------------------------------------------------------
# Workloads
# ---------------------------------------------------------------------------


class TestWorkloads:
    """Tests for get_workload() and update_workload()."""

    @pytest.mark.parametrize(
        ("kind", "resource"),
        [
            ("Deployment", "deployments"),
            ("StatefulSet", "statefulsets"),
            ("DaemonSet", "daemonsets"),
            ("ReplicaSet", "replicasets"),
        ],
    )
    async def test_get_uses_apps_v1_path(self, kind: str, resource: str) -> None:
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.url.path)
            return httpx.Response(200, json=_workload(kind, "tf2"))

        async with _make_client(handler) as client:
            obj = await client.get_workload(kind, "tf2")

        assert obj["kind"] == kind
        assert seen == [f"/apis/apps/v1/namespaces/games/{resource}/tf2"]

    async def test_get_not_found(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return _status(404, "NotFound", 'deployments.apps "tf2" not found')

        async with _make_client(handler) as client:
            with pytest.raises(NotFoundError):
                await client.get_workload("Deployment", "tf2")

    async def test_unsupported_kind(self) -> None:
        async with _make_client(lambda r: httpx.Response(200, json={})) as client:
            with pytest.raises(UnsupportedWorkloadKindError, match="CronJob"):
                await client.get_workload("CronJob", "nightly")

    async def test_update_puts_object(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, content=request.content)

        obj = _workload("Deployment", "tf2", resource_version="42")
        async with _make_client(handler) as client:
            updated = await client.update_workload("Deployment", obj)

        request = seen[0]
        assert request.method == "PUT"
        assert request.url.path == "/apis/apps/v1/namespaces/games/deployments/tf2"
        body = json.loads(request.content)
        assert body["metadata"]["resourceVersion"] == "42"
        assert updated == body

    async def test_update_conflict(self) -> None:
        handler = lambda r: _status(409, "Conflict", "the object has been modified")  # noqa: E731
        async with _make_client(handler) as client:
            with pytest.raises(ConflictError, match="has been modified"):
                await client.update_workload("ReplicaSet", _workload("ReplicaSet", "tf2-abc"))

    async def test_update_requires_name(self) -> None:
        async with _make_client(lambda r: httpx.Response(200, json={})) as client:
            with pytest.raises(ValueError, match="metadata.name"):
                await client.update_workload("Deployment", {"metadata": {}})


def test_namespace_required() -> None:
    with pytest.raises(ValueError):
        KubeClient(ClusterConfig(server="https://kube.example"), "")
