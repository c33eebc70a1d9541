"""Kubernetes-backed pool store and pod liveness checks.

IP pools live in a cluster-scoped custom resource
(``ippools.k8s.pgc.umn.edu/v1alpha1``).  Reservations made by the allocator
are written through the ``status`` subresource using the resource version
read with the pool, so the API server rejects concurrent updates with
``409 Conflict``.
"""

from __future__ import annotations

import base64
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

import requests
import yaml

from .exceptions import ConfigError, ConflictError, LivenessQueryError, StoreError
from .pool import API_GROUP, API_VERSION, IPPool
from .store import PodLiveness, PoolStore, VersionedPool

LOG = logging.getLogger(__name__)

POOL_PLURAL = "ippools"
DEFAULT_TIMEOUT = 10.0


def _named(entries: Any, name: str, kind: str) -> Dict[str, Any]:
    for entry in entries or []:
        if isinstance(entry, Mapping) and entry.get("name") == name:
            return dict(entry.get(kind) or {})
    raise ConfigError(f"kubeconfig has no {kind} named '{name}'")


def _materialise(data: str, suffix: str) -> str:
    """Write base64 encoded ``*-data`` content to a file ``requests`` can use."""

    try:
        content = base64.b64decode(data, validate=True)
    except ValueError as exc:
        raise ConfigError(f"kubeconfig contains invalid base64 data: {exc}") from exc

    handle = tempfile.NamedTemporaryFile(
        prefix="k8s-ipam-", suffix=suffix, delete=False
    )
    with handle:
        handle.write(content)
    return handle.name


@dataclass
class KubeConfig:
    """Connection settings resolved from a kubeconfig file."""

    server: str
    verify: Union[bool, str] = True
    cert: Optional[Tuple[str, str]] = None
    token: Optional[str] = None
    auth: Optional[Tuple[str, str]] = None
    # Files written for ``*-data`` entries; removed by :meth:`cleanup`.
    temp_files: List[str] = field(default_factory=list)

    def cleanup(self) -> None:
        while self.temp_files:
            name = self.temp_files.pop()
            try:
                os.unlink(name)
            except FileNotFoundError:
                pass

    @classmethod
    def load(cls, path: Path, context: Optional[str] = None) -> "KubeConfig":
        path = Path(path)
        try:
            data = yaml.safe_load(path.read_text())
        except OSError as exc:
            raise ConfigError(f"unable to load kubeconfig from {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise ConfigError(f"unable to parse kubeconfig {path}: {exc}") from exc
        if not isinstance(data, Mapping):
            raise ConfigError(f"kubeconfig {path} must be a mapping")
        return cls.from_dict(data, base_dir=path.parent, context=context)

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        *,
        base_dir: Path = Path("."),
        context: Optional[str] = None,
    ) -> "KubeConfig":
        context_name = context or data.get("current-context")
        if not context_name:
            raise ConfigError("kubeconfig has no current-context")

        ctx = _named(data.get("contexts"), context_name, "context")
        if not ctx.get("cluster"):
            raise ConfigError(f"kubeconfig context '{context_name}' has no cluster")
        cluster = _named(data.get("clusters"), ctx["cluster"], "cluster")
        user = _named(data.get("users"), ctx["user"], "user") if ctx.get("user") else {}

        server = cluster.get("server")
        if not server:
            raise ConfigError(f"kubeconfig cluster '{ctx['cluster']}' has no server")

        def resolve(value: str) -> str:
            candidate = Path(value)
            return str(candidate if candidate.is_absolute() else base_dir / candidate)

        config = cls(server=str(server).rstrip("/"))

        def materialise(data: str, suffix: str) -> str:
            name = _materialise(data, suffix)
            config.temp_files.append(name)
            return name

        try:
            if cluster.get("insecure-skip-tls-verify"):
                config.verify = False
            elif cluster.get("certificate-authority-data"):
                config.verify = materialise(cluster["certificate-authority-data"], ".crt")
            elif cluster.get("certificate-authority"):
                config.verify = resolve(cluster["certificate-authority"])

            if user.get("client-certificate-data") and user.get("client-key-data"):
                config.cert = (
                    materialise(user["client-certificate-data"], ".crt"),
                    materialise(user["client-key-data"], ".key"),
                )
            elif user.get("client-certificate") and user.get("client-key"):
                config.cert = (resolve(user["client-certificate"]), resolve(user["client-key"]))

            config.token = user.get("token")
            if not config.token and user.get("tokenFile"):
                token_path = Path(resolve(user["tokenFile"]))
                try:
                    config.token = token_path.read_text().strip()
                except OSError as exc:
                    raise ConfigError(f"unable to read token file {token_path}: {exc}") from exc
        except Exception:
            config.cleanup()
            raise

        if user.get("username") and user.get("password"):
            config.auth = (str(user["username"]), str(user["password"]))

        return config


class KubeClient(PoolStore, PodLiveness):
    """Talk to the Kubernetes API for pools and pods."""

    def __init__(
        self,
        config: KubeConfig,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._config = config
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.verify = config.verify
        if config.cert:
            self._session.cert = config.cert
        if config.auth:
            self._session.auth = config.auth
        if config.token:
            self._session.headers["Authorization"] = f"Bearer {config.token}"

    @classmethod
    def from_kubeconfig(cls, path: Path, *, timeout: float = DEFAULT_TIMEOUT) -> "KubeClient":
        return cls(KubeConfig.load(path), timeout=timeout)

    def close(self) -> None:
        """Close the HTTP session and remove credential files written for it."""

        try:
            self._session.close()
        finally:
            self._config.cleanup()

    def __enter__(self) -> "KubeClient":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # ------------------------------------------------------------------
    # PoolStore
    # ------------------------------------------------------------------
    def fetch(self, pool_name: str) -> VersionedPool:
        url = self._pool_url(pool_name)
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise StoreError(f"unable to get ip pool '{pool_name}': {exc}") from exc

        if response.status_code == 404:
            raise StoreError(f"ip pool '{pool_name}' not found")
        if not response.ok:
            raise StoreError(
                f"unable to get ip pool '{pool_name}': HTTP {response.status_code} {response.text}"
            )

        try:
            resource = response.json()
        except ValueError as exc:
            raise StoreError(f"ip pool '{pool_name}' response is not JSON: {exc}") from exc
        if not isinstance(resource, Mapping):
            raise StoreError(
                f"ip pool '{pool_name}' response is not an object: {type(resource).__name__}"
            )

        version = (resource.get("metadata") or {}).get("resourceVersion")
        LOG.debug("fetched ip pool %s at resourceVersion %s", pool_name, version)
        return VersionedPool(pool=IPPool.from_resource(resource), version=version)

    def write_status(self, pool: IPPool, version: Any) -> None:
        url = f"{self._pool_url(pool.name)}/status"
        body = pool.to_resource(version=version)
        try:
            response = self._session.put(url, json=body, timeout=self._timeout)
        except requests.RequestException as exc:
            raise StoreError(f"unable to update ip pool '{pool.name}': {exc}") from exc

        if response.status_code == 409:
            raise ConflictError(pool.name, version)
        if not response.ok:
            raise StoreError(
                f"unable to update ip pool '{pool.name}': "
                f"HTTP {response.status_code} {response.text}"
            )

    # ------------------------------------------------------------------
    # PodLiveness
    # ------------------------------------------------------------------
    def exists(self, namespace: str, name: str) -> bool:
        url = f"{self._config.server}/api/v1/namespaces/{namespace}/pods/{name}"
        try:
            response = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise LivenessQueryError(f"unable to get pod {namespace}/{name}: {exc}") from exc

        if response.status_code == 404:
            return False
        if not response.ok:
            raise LivenessQueryError(
                f"unable to get pod {namespace}/{name}: HTTP {response.status_code} {response.text}"
            )
        return True

    def _pool_url(self, pool_name: str) -> str:
        return f"{self._config.server}/apis/{API_GROUP}/{API_VERSION}/{POOL_PLURAL}/{pool_name}"
