"""
Monitoring synchronizer. Ensures the GrafanaDashboard and ServiceMonitor
objects of a workload exist.

Ensure-exists, never upsert: an object already present under the canonical
name is left untouched. Each object is its own idempotent step; the first
failure aborts the call and the scheduler's retry picks up the rest.
"""

import hashlib
import json
import logging
from typing import Callable, List, Optional

from redis_operator.config import settings
from redis_operator.errors import StoreError
from redis_operator.metrics import record_created, record_error
from redis_operator.naming import (
    MonitorTarget,
    Topology,
    dashboard_name,
    monitor_targets,
)
from redis_operator.services.kubernetes_service import (
    GRAFANA_DASHBOARD,
    SERVICE_MONITOR,
    KubernetesObjectStore,
    ResourceKind,
)

logger = logging.getLogger("redis-operator.monitoring")


# ---------------------------------------------------------------------------
# Desired objects
# ---------------------------------------------------------------------------

def _panel(panel_id: int, title: str, expr: str, x: int, y: int, kind: str = "timeseries", unit: str = "short") -> dict:
    return {
        "id": panel_id,
        "type": kind,
        "title": title,
        "datasource": "${DS_PROMETHEUS}",
        "gridPos": {"h": 8, "w": 12, "x": x, "y": y},
        "fieldConfig": {"defaults": {"unit": unit}, "overrides": []},
        "targets": [{"expr": expr, "legendFormat": "{{pod}}", "refId": "A"}],
    }


def dashboard_uid(namespace: str, workload: str, topology: Topology) -> str:
    """Grafana caps uids at 40 chars; long names keep a readable prefix plus a digest of the full identity."""
    full = f"{namespace}-{dashboard_name(workload, topology)}"
    if len(full) <= 40:
        return full
    digest = hashlib.sha1(full.encode()).hexdigest()[:8]
    return f"{full[:31]}-{digest}"


def dashboard_json(namespace: str, workload: str, topology: Topology) -> str:
    """Grafana dashboard over the workload's redis-exporter series."""
    sel = f'namespace="{namespace}",service=~"{workload}.*"'
    panels = [
        _panel(1, "Up", f"redis_up{{{sel}}}", 0, 0, kind="stat"),
        _panel(2, "Connected clients", f"redis_connected_clients{{{sel}}}", 12, 0),
        _panel(3, "Memory used", f"redis_memory_used_bytes{{{sel}}}", 0, 8, unit="bytes"),
        _panel(4, "Commands / sec", f"rate(redis_commands_processed_total{{{sel}}}[1m])", 12, 8, unit="ops"),
        _panel(
            5, "Keyspace hit ratio",
            f"rate(redis_keyspace_hits_total{{{sel}}}[5m]) / "
            f"(rate(redis_keyspace_hits_total{{{sel}}}[5m]) + rate(redis_keyspace_misses_total{{{sel}}}[5m]))",
            0, 16, unit="percentunit",
        ),
        _panel(6, "Network input", f"rate(redis_net_input_bytes_total{{{sel}}}[1m])", 12, 16, unit="Bps"),
    ]
    if topology == Topology.CLUSTER:
        panels.append(_panel(7, "Cluster state", f"redis_cluster_state{{{sel}}}", 0, 24, kind="stat"))
        panels.append(_panel(8, "Known nodes", f"redis_cluster_known_nodes{{{sel}}}", 12, 24, kind="stat"))
    return json.dumps({
        "title": f"Redis {topology.value} / {namespace}/{workload}",
        "uid": dashboard_uid(namespace, workload, topology),
        "tags": ["redis", topology.value],
        "timezone": "browser",
        "schemaVersion": 36,
        "refresh": "30s",
        "time": {"from": "now-1h", "to": "now"},
        "templating": {"list": [{
            "name": "DS_PROMETHEUS",
            "type": "datasource",
            "query": "prometheus",
        }]},
        "panels": panels,
    })


def build_grafana_dashboard(
    namespace: str, owner: str, workload: str, topology: Topology, grafana_app: str = settings.GRAFANA_APP_NAME
) -> dict:
    return {
        "apiVersion": GRAFANA_DASHBOARD.api_version,
        "kind": GRAFANA_DASHBOARD.kind,
        "metadata": {
            "namespace": namespace,
            "name": dashboard_name(workload, topology),
            "labels": {"app": grafana_app},
            "annotations": {"creator": owner, "owner": owner, "userId": owner},
        },
        "spec": {"json": dashboard_json(namespace, workload, topology)},
    }


def build_service_monitor(
    namespace: str, owner: str, target: MonitorTarget, exporter_port: str = settings.EXPORTER_PORT
) -> dict:
    return {
        "apiVersion": SERVICE_MONITOR.api_version,
        "kind": SERVICE_MONITOR.kind,
        "metadata": {
            "namespace": namespace,
            "name": target.name,
            "labels": {"app": target.match_label},
            "annotations": {"creator": owner, "owner": owner},
        },
        "spec": {
            "selector": {"matchLabels": target.selector},
            "endpoints": [{"port": exporter_port}],
            "namespaceSelector": {"matchNames": [namespace]},
        },
    }


# ---------------------------------------------------------------------------
# Synchronizer
# ---------------------------------------------------------------------------

class MonitoringSynchronizer:

    def __init__(
        self,
        store: KubernetesObjectStore,
        grafana_app: str = settings.GRAFANA_APP_NAME,
        exporter_port: str = settings.EXPORTER_PORT,
    ):
        self.store = store
        self.grafana_app = grafana_app
        self.exporter_port = exporter_port

    def ensure_dashboard(
        self, namespace: str, owner: str, workload: str, topology: Topology, deadline: Optional[float] = None
    ) -> bool:
        """Create the workload's GrafanaDashboard if missing. Returns True if it was created by this call."""
        return self._ensure(
            GRAFANA_DASHBOARD,
            namespace,
            dashboard_name(workload, topology),
            lambda: build_grafana_dashboard(namespace, owner, workload, topology, self.grafana_app),
            deadline,
        )

    def ensure_monitor(
        self, namespace: str, owner: str, workload: str, topology: Topology, deadline: Optional[float] = None
    ) -> List[str]:
        """
        Create the workload's ServiceMonitor(s) if missing: one for standalone,
        leader then follower for cluster. Returns the names created by this call.
        """
        created = []
        for target in monitor_targets(workload, topology):
            if self._ensure(
                SERVICE_MONITOR,
                namespace,
                target.name,
                lambda t=target: build_service_monitor(namespace, owner, t, self.exporter_port),
                deadline,
            ):
                created.append(target.name)
        return created

    def _ensure(
        self, kind: ResourceKind, namespace: str, name: str, build: Callable[[], dict], deadline: Optional[float]
    ) -> bool:
        try:
            self.store.get_object(kind, namespace, name, deadline=deadline)
            logger.debug(f"[{namespace}/{name}] {kind.kind} is in-sync")
            return False
        except StoreError as e:
            if not e.is_not_found:
                record_error(e)
                logger.error(f"[{namespace}/{name}] Failed to read {kind.kind}: {e}")
                raise

        try:
            self.store.create_object(kind, namespace, build(), deadline=deadline)
        except StoreError as e:
            if e.is_already_exists:
                logger.info(f"[{namespace}/{name}] {kind.kind} created concurrently, in-sync")
                return False
            record_error(e)
            logger.error(f"[{namespace}/{name}] Failed to create {kind.kind}: {e}")
            raise

        record_created(kind.kind)
        logger.info(f"[{namespace}/{name}] Create {kind.kind} success")
        return True
