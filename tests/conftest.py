import copy
import json
from types import SimpleNamespace

import pytest
from kubernetes.client import ApiException

from redis_operator.operator import build_components
from redis_operator.services.finalizer import FinalizerOrchestrator
from redis_operator.services.kubernetes_service import KubernetesObjectStore
from redis_operator.services.monitoring import MonitoringSynchronizer

GROUP = "redis.redis.opstreelabs.in"
VERSION = "v1beta1"


def api_error(status: int, reason: str = "", message: str = "") -> ApiException:
    e = ApiException(status=status, reason=reason or "error")
    if reason:
        e.body = json.dumps({"kind": "Status", "reason": reason, "message": message or reason})
    return e


class FakeCustomObjectsApi:
    """
    In-memory CustomObjectsApi. Mimics the API server closely enough for the
    finalizer protocol: resourceVersion checks on replace, deletion blocked by
    finalizers, object dropped once the last finalizer is removed.
    """

    def __init__(self):
        self.objects = {}
        self.calls = []
        self.failures = {}
        self.raw_responses = {}
        self._rv = 0

    def _next_rv(self) -> str:
        self._rv += 1
        return str(self._rv)

    def fail(self, method: str, name: str, exc: Exception):
        """Raise exc on the next call of method for name."""
        self.failures[(method, name)] = exc

    def _check(self, method: str, name: str):
        self.calls.append((method, name))
        exc = self.failures.pop((method, name), None)
        if exc is not None:
            raise exc

    def put(self, group: str, version: str, plural: str, body: dict):
        body = copy.deepcopy(body)
        meta = body["metadata"]
        meta["resourceVersion"] = self._next_rv()
        self.objects[(group, version, meta["namespace"], plural, meta["name"])] = body
        return body

    def find(self, group, version, namespace, plural, name):
        return self.objects.get((group, version, namespace, plural, name))

    def names(self, plural: str) -> set:
        return {key[4] for key in self.objects if key[3] == plural}

    def get_namespaced_custom_object(self, group, version, namespace, plural, name, _request_timeout=None):
        self._check("get", name)
        if name in self.raw_responses:
            return self.raw_responses[name]
        obj = self.find(group, version, namespace, plural, name)
        if obj is None:
            raise api_error(404, "NotFound")
        return copy.deepcopy(obj)

    def create_namespaced_custom_object(self, group, version, namespace, plural, body, _request_timeout=None):
        name = body["metadata"]["name"]
        self._check("create", name)
        if self.find(group, version, namespace, plural, name) is not None:
            raise api_error(409, "AlreadyExists")
        return copy.deepcopy(self.put(group, version, plural, body))

    def replace_namespaced_custom_object(self, group, version, namespace, plural, name, body, _request_timeout=None):
        self._check("replace", name)
        current = self.find(group, version, namespace, plural, name)
        if current is None:
            raise api_error(404, "NotFound")
        if body["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            raise api_error(409, "Conflict", "the object has been modified")
        meta = body["metadata"]
        if meta.get("deletionTimestamp") and not meta.get("finalizers"):
            del self.objects[(group, version, namespace, plural, name)]
            return copy.deepcopy(body)
        return copy.deepcopy(self.put(group, version, plural, body))

    def delete_namespaced_custom_object(self, group, version, namespace, plural, name, _request_timeout=None):
        self._check("delete", name)
        key = (group, version, namespace, plural, name)
        obj = self.objects.get(key)
        if obj is None:
            raise api_error(404, "NotFound")
        if obj["metadata"].get("finalizers"):
            obj["metadata"]["deletionTimestamp"] = "2024-01-01T00:00:00Z"
        else:
            del self.objects[key]
        return {"kind": "Status", "status": "Success"}

    def list_cluster_custom_object(self, group, version, plural, _request_timeout=None):
        self._check("list", plural)
        items = [
            copy.deepcopy(obj) for (g, v, _, p, _), obj in self.objects.items()
            if (g, v, p) == (group, version, plural)
        ]
        return {"items": items}


class FakeCoreV1Api:
    def __init__(self):
        self.services = set()
        self.pvcs = set()
        self.calls = []
        self.failures = {}

    def fail(self, method: str, name: str, exc: Exception):
        self.failures[(method, name)] = exc

    def _delete(self, method: str, bucket: set, name: str, namespace: str):
        self.calls.append((method, name))
        exc = self.failures.pop((method, name), None)
        if exc is not None:
            raise exc
        if (namespace, name) not in bucket:
            raise api_error(404, "NotFound")
        bucket.discard((namespace, name))

    def delete_namespaced_service(self, name, namespace, _request_timeout=None):
        self._delete("delete_service", self.services, name, namespace)

    def delete_namespaced_persistent_volume_claim(self, name, namespace, _request_timeout=None):
        self._delete("delete_pvc", self.pvcs, name, namespace)


def redis_body(name="cache0", namespace="ns1", finalizers=None, deleting=False, annotations=None) -> dict:
    meta = {"name": name, "namespace": namespace, "finalizers": list(finalizers or [])}
    if deleting:
        meta["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    if annotations:
        meta["annotations"] = annotations
    return {
        "apiVersion": f"{GROUP}/{VERSION}",
        "kind": "Redis",
        "metadata": meta,
        "spec": {"kubernetesConfig": {"image": "redis:7"}},
    }


def redis_cluster_body(
    name="cache1", namespace="ns1", leader=1, follower=1, finalizers=None, deleting=False, annotations=None
) -> dict:
    body = redis_body(name, namespace, finalizers, deleting, annotations)
    body["kind"] = "RedisCluster"
    body["spec"] = {
        "clusterSize": 3,
        "redisLeader": {"replicas": leader},
        "redisFollower": {"replicas": follower},
    }
    return body


@pytest.fixture
def core():
    return FakeCoreV1Api()


@pytest.fixture
def custom():
    return FakeCustomObjectsApi()


@pytest.fixture
def store(core, custom):
    return KubernetesObjectStore(core, custom, request_timeout=5)


@pytest.fixture
def synchronizer(store):
    return MonitoringSynchronizer(store, grafana_app="grafana", exporter_port="redis-exporter")


@pytest.fixture
def orchestrator(store):
    return FinalizerOrchestrator(store)


@pytest.fixture
def memo(store):
    memo = SimpleNamespace()
    build_components(memo, store)
    return memo


@pytest.fixture
def add_redis(custom):
    def _add(**kwargs):
        return custom.put(GROUP, VERSION, "redis", redis_body(**kwargs))
    return _add


@pytest.fixture
def add_redis_cluster(custom):
    def _add(**kwargs):
        return custom.put(GROUP, VERSION, "redisclusters", redis_cluster_body(**kwargs))
    return _add
