"""
Kubernetes service layer — the single object-store capability handed to the
synchronizer and the finalizer orchestrator.

Design principles:
  - Injected, not global: callers receive a KubernetesObjectStore instance
  - No caching: every call is a round trip, ground truth is re-read each time
  - Clean error handling: ApiException / transport failures become StoreError
  - Deadlines: the remaining time of the caller's deadline bounds each request
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from kubernetes import client, config
from kubernetes.client import ApiException
from urllib3.exceptions import HTTPError

from redis_operator.config import settings
from redis_operator.errors import ErrorKind, StoreError
from redis_operator.naming import Topology

logger = logging.getLogger("redis-operator.kubernetes")


@dataclass(frozen=True)
class ResourceKind:
    group: str
    version: str
    plural: str
    kind: str

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"


GRAFANA_DASHBOARD = ResourceKind("integreatly.org", "v1alpha1", "grafanadashboards", "GrafanaDashboard")
SERVICE_MONITOR = ResourceKind("monitoring.coreos.com", "v1", "servicemonitors", "ServiceMonitor")
REDIS = ResourceKind(settings.CRD_GROUP, settings.CRD_VERSION, settings.REDIS_PLURAL, "Redis")
REDIS_CLUSTER = ResourceKind(
    settings.CRD_GROUP, settings.CRD_VERSION, settings.REDIS_CLUSTER_PLURAL, "RedisCluster"
)


def workload_kind(topology: Topology) -> ResourceKind:
    return REDIS_CLUSTER if topology == Topology.CLUSTER else REDIS


_k8s_loaded = False


def _ensure_k8s():
    """Load Kubernetes config exactly once."""
    global _k8s_loaded
    if _k8s_loaded:
        return
    if settings.IN_CLUSTER:
        config.load_incluster_config()
    else:
        config.load_kube_config(config_file=settings.KUBECONFIG or None)
    _k8s_loaded = True


def deadline_after(seconds: float) -> float:
    """Absolute deadline on the monotonic clock."""
    return time.monotonic() + seconds


def _expect_object(data) -> dict:
    if not isinstance(data, dict) or not (data.get("metadata") or {}).get("name"):
        raise StoreError(ErrorKind.MALFORMED, f"unexpected response from API server: {str(data)[:200]}")
    return data


class KubernetesObjectStore:
    """Read / create / replace / delete by namespace + kind + name."""

    def __init__(
        self,
        core: client.CoreV1Api,
        custom: client.CustomObjectsApi,
        request_timeout: float = settings.API_TIMEOUT,
    ):
        self.core = core
        self.custom = custom
        self.request_timeout = request_timeout

    @classmethod
    def from_config(cls) -> "KubernetesObjectStore":
        _ensure_k8s()
        return cls(client.CoreV1Api(), client.CustomObjectsApi())

    def _timeout(self, deadline: Optional[float]) -> float:
        if deadline is None:
            return self.request_timeout
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise StoreError(ErrorKind.TRANSIENT, "deadline exceeded before request was sent")
        return min(remaining, self.request_timeout)

    def _call(self, fn: Callable, *args, deadline: Optional[float] = None, creating: bool = False, **kwargs):
        timeout = self._timeout(deadline)
        try:
            return fn(*args, _request_timeout=timeout, **kwargs)
        except ApiException as e:
            raise StoreError.from_api_exception(e, creating=creating) from e
        except HTTPError as e:
            raise StoreError(ErrorKind.TRANSIENT, f"transport error: {e}") from e

    # --- custom objects ---

    def get_object(self, kind: ResourceKind, namespace: str, name: str, deadline: Optional[float] = None) -> dict:
        data = self._call(
            self.custom.get_namespaced_custom_object,
            kind.group, kind.version, namespace, kind.plural, name,
            deadline=deadline,
        )
        return _expect_object(data)

    def create_object(self, kind: ResourceKind, namespace: str, body: dict, deadline: Optional[float] = None) -> dict:
        data = self._call(
            self.custom.create_namespaced_custom_object,
            kind.group, kind.version, namespace, kind.plural, body,
            deadline=deadline,
            creating=True,
        )
        return _expect_object(data)

    def replace_object(
        self, kind: ResourceKind, namespace: str, name: str, body: dict, deadline: Optional[float] = None
    ) -> dict:
        """Full replace; the body's resourceVersion makes it fail with Conflict if the object moved on."""
        data = self._call(
            self.custom.replace_namespaced_custom_object,
            kind.group, kind.version, namespace, kind.plural, name, body,
            deadline=deadline,
        )
        return _expect_object(data)

    def delete_object(self, kind: ResourceKind, namespace: str, name: str, deadline: Optional[float] = None):
        self._call(
            self.custom.delete_namespaced_custom_object,
            kind.group, kind.version, namespace, kind.plural, name,
            deadline=deadline,
        )

    def list_objects(self, kind: ResourceKind, deadline: Optional[float] = None) -> list:
        data = self._call(
            self.custom.list_cluster_custom_object,
            kind.group, kind.version, kind.plural,
            deadline=deadline,
        )
        if not isinstance(data, dict):
            raise StoreError(ErrorKind.MALFORMED, f"unexpected list response for {kind.plural}")
        return [_expect_object(item) for item in data.get("items") or []]

    # --- core objects ---

    def delete_service(self, namespace: str, name: str, deadline: Optional[float] = None):
        self._call(self.core.delete_namespaced_service, name, namespace, deadline=deadline)

    def delete_pvc(self, namespace: str, name: str, deadline: Optional[float] = None):
        self._call(self.core.delete_namespaced_persistent_volume_claim, name, namespace, deadline=deadline)
