"""
Prometheus metrics for the reconciliation core.
"""
from prometheus_client import Counter

from redis_operator.errors import StoreError

DEPENDENTS_CREATED = Counter(
    "redis_operator_dependent_objects_created_total",
    "Dashboards and ServiceMonitors created by the operator",
    ["kind"],
)
TEARDOWNS = Counter(
    "redis_operator_teardowns_total",
    "Finalizer teardown attempts",
    ["topology", "result"],
)
STORE_ERRORS = Counter(
    "redis_operator_store_errors_total",
    "Errors surfaced by the object store",
    ["kind"],
)


def record_created(kind: str):
    DEPENDENTS_CREATED.labels(kind=kind).inc()


def record_teardown(topology: str, result: str):
    TEARDOWNS.labels(topology=topology, result=result).inc()


def record_error(error: StoreError):
    STORE_ERRORS.labels(kind=error.kind.value).inc()
