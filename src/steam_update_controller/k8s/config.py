"""Cluster connection settings from a kubeconfig file or the pod's service account."""

from __future__ import annotations

import base64
import contextlib
import os
import ssl
import tempfile
from collections.abc import Generator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
import yaml

from steam_update_controller.logging import get_logger

log = get_logger("steam_update_controller.k8s.config")

SERVICE_ACCOUNT_DIR = Path("/var/run/secrets/kubernetes.io/serviceaccount")


class ClusterConfigError(Exception):
    """Raised when no usable cluster configuration can be built."""


class BearerTokenAuth(httpx.Auth):
    """Bearer token auth, optionally re-reading a token file per request.

    Projected service account tokens are rotated on disk by the kubelet,
    so a file-backed token must not be cached.
    """

    def __init__(self, token: str | None = None, token_file: Path | None = None) -> None:
        if token is None and token_file is None:
            raise ValueError("token or token_file is required")
        self._token = token
        self._token_file = token_file

    def _current_token(self) -> str:
        if self._token_file is not None:
            return self._token_file.read_text(encoding="utf-8").strip()
        return self._token or ""

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self._current_token()}"
        yield request


@dataclass
class ClusterConfig:
    """Everything needed to build an ``httpx.AsyncClient`` for the API server."""

    server: str
    verify: ssl.SSLContext | bool = True
    auth: httpx.Auth | None = None
    source: str = "in-cluster"


def load_cluster_config(kubeconfig: str | None = None) -> ClusterConfig:
    """Load from ``kubeconfig`` if given, else from in-cluster credentials."""
    if kubeconfig:
        log.info("using_kubeconfig", path=kubeconfig)
        return load_kubeconfig(Path(kubeconfig))

    log.info("using_in_cluster_config")
    return load_in_cluster_config()


def load_in_cluster_config(
    environ: dict[str, str] | None = None,
    service_account_dir: Path = SERVICE_ACCOUNT_DIR,
) -> ClusterConfig:
    """Build config from ``KUBERNETES_SERVICE_*`` and the mounted service account."""
    env = os.environ if environ is None else environ
    host = env.get("KUBERNETES_SERVICE_HOST")
    port = env.get("KUBERNETES_SERVICE_PORT")
    if not host or not port:
        raise ClusterConfigError(
            "unable to load in-cluster configuration, "
            "KUBERNETES_SERVICE_HOST and KUBERNETES_SERVICE_PORT must be defined"
        )

    token_file = service_account_dir / "token"
    ca_file = service_account_dir / "ca.crt"
    if not token_file.exists():
        raise ClusterConfigError(f"service account token not found at {token_file}")

    if ":" in host:
        host = f"[{host}]"

    verify: ssl.SSLContext | bool = True
    if ca_file.exists():
        verify = ssl.create_default_context(cafile=str(ca_file))

    return ClusterConfig(
        server=f"https://{host}:{port}",
        verify=verify,
        auth=BearerTokenAuth(token_file=token_file),
        source="in-cluster",
    )


def _named(entries: list[dict[str, Any]] | None, name: str, section: str) -> dict[str, Any]:
    for entry in entries or []:
        if entry.get("name") == name:
            value: dict[str, Any] = entry.get(section) or {}
            return value
    raise ClusterConfigError(f"{section} {name!r} not found in kubeconfig")


def _resolve(base: Path, value: str) -> str:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = base / path
    return str(path)


def _materialize(data: str, suffix: str) -> str:
    """Write base64 kubeconfig ``*-data`` to a private temp file for ``ssl``.

    The caller owns the returned file and must remove it.
    """
    content = base64.b64decode(data)
    handle = tempfile.NamedTemporaryFile(prefix="kubeconfig-", suffix=suffix, delete=False)
    with handle:
        handle.write(content)
    os.chmod(handle.name, 0o600)
    return handle.name


def load_kubeconfig(path: Path, context: str | None = None) -> ClusterConfig:
    """Build config from a kubeconfig file.

    Supports bearer tokens (inline or ``tokenFile``), client certificates
    (paths or inline data) and cluster CAs (paths, inline data or
    ``insecure-skip-tls-verify``). Exec and auth-provider plugins are not
    supported.
    """
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ClusterConfigError(f"failed to load kubeconfig {path}: {exc}") from exc

    base = path.parent
    context_name = context or document.get("current-context")
    if not context_name:
        raise ClusterConfigError("kubeconfig has no current-context")

    ctx = _named(document.get("contexts"), context_name, "context")
    cluster = _named(document.get("clusters"), ctx.get("cluster", ""), "cluster")
    user = _named(document.get("users"), ctx.get("user", ""), "user") if ctx.get("user") else {}

    server = cluster.get("server")
    if not server:
        raise ClusterConfigError(f"cluster for context {context_name!r} has no server")

    verify: ssl.SSLContext | bool
    if cluster.get("insecure-skip-tls-verify"):
        verify = False
    elif cluster.get("certificate-authority-data"):
        pem = base64.b64decode(cluster["certificate-authority-data"]).decode("utf-8")
        verify = ssl.create_default_context(cadata=pem)
    elif cluster.get("certificate-authority"):
        verify = ssl.create_default_context(
            cafile=_resolve(base, cluster["certificate-authority"])
        )
    else:
        verify = ssl.create_default_context()

    # Inline cert/key data only lives on disk until ssl has loaded it
    materialized: list[str] = []
    try:
        cert_file = None
        key_file = None
        if user.get("client-certificate-data"):
            cert_file = _materialize(user["client-certificate-data"], ".crt")
            materialized.append(cert_file)
        elif user.get("client-certificate"):
            cert_file = _resolve(base, user["client-certificate"])
        if user.get("client-key-data"):
            key_file = _materialize(user["client-key-data"], ".key")
            materialized.append(key_file)
        elif user.get("client-key"):
            key_file = _resolve(base, user["client-key"])

        if cert_file:
            if not isinstance(verify, ssl.SSLContext):
                # insecure-skip-tls-verify with a client certificate
                verify = ssl.create_default_context()
                verify.check_hostname = False
                verify.verify_mode = ssl.CERT_NONE
            verify.load_cert_chain(certfile=cert_file, keyfile=key_file)
    except (OSError, ValueError) as exc:
        raise ClusterConfigError(f"failed to load client certificate: {exc}") from exc
    finally:
        for name in materialized:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(name)

    auth: httpx.Auth | None = None
    if user.get("token"):
        auth = BearerTokenAuth(token=user["token"])
    elif user.get("tokenFile"):
        auth = BearerTokenAuth(token_file=Path(_resolve(base, user["tokenFile"])))
    elif "exec" in user or "auth-provider" in user:
        raise ClusterConfigError("kubeconfig exec and auth-provider plugins are not supported")

    return ClusterConfig(
        server=str(server).rstrip("/"),
        verify=verify,
        auth=auth,
        source=f"kubeconfig:{context_name}",
    )
