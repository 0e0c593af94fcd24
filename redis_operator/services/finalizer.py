"""
Finalizer orchestrator. Attaches the workload's finalizer token while it is
active and, once the workload is marked for deletion, tears down everything it
owns before releasing the token.

  Active ──(deletionTimestamp set, token present)──▶ TeardownInProgress
  TeardownInProgress:
    1. Delete primary + headless Services
    2. Delete PVCs (one standalone claim, or every role/index claim)
    3. Delete the GrafanaDashboard
    4. Delete the ServiceMonitor(s)
    5. Remove the finalizer token (replace with resourceVersion)
  ──▶ Released

Guarantees:
  - NotFound on any delete counts as done; every step is safe to re-run
  - Any other error aborts the sequence with the token still attached, so the
    next invocation starts again from step 1
  - A deletion-marked workload without the token is never touched
"""

import copy
import logging
from enum import Enum
from functools import partial
from typing import Callable, Optional, Tuple

from redis_operator.errors import StoreError
from redis_operator.metrics import record_error, record_teardown
from redis_operator.models import WorkloadDescriptor, parse_workload
from redis_operator.naming import (
    Topology,
    dashboard_name,
    monitor_targets,
    pvc_names,
    service_names,
)
from redis_operator.services.kubernetes_service import (
    GRAFANA_DASHBOARD,
    SERVICE_MONITOR,
    KubernetesObjectStore,
    workload_kind,
)

logger = logging.getLogger("redis-operator.finalizer")


class FinalizerState(str, Enum):
    ACTIVE = "Active"
    TEARDOWN_IN_PROGRESS = "TeardownInProgress"
    RELEASED = "Released"


def state_of(workload: WorkloadDescriptor) -> FinalizerState:
    if not workload.marked_for_deletion:
        return FinalizerState.ACTIVE
    if workload.has_finalizer:
        return FinalizerState.TEARDOWN_IN_PROGRESS
    return FinalizerState.RELEASED


class FinalizerOrchestrator:

    def __init__(self, store: KubernetesObjectStore):
        self.store = store

    def _read(
        self, namespace: str, name: str, topology: Topology, deadline: Optional[float]
    ) -> Tuple[Optional[dict], Optional[WorkloadDescriptor]]:
        try:
            raw = self.store.get_object(workload_kind(topology), namespace, name, deadline=deadline)
        except StoreError as e:
            if e.is_not_found:
                return None, None
            record_error(e)
            raise
        return raw, parse_workload(raw, topology)

    # -----------------------------------------------------------------------
    # Active
    # -----------------------------------------------------------------------

    def ensure_finalizer(self, namespace: str, name: str, topology: Topology, deadline: Optional[float] = None) -> bool:
        """Attach the token to an active workload. Returns True if it was added by this call."""
        raw, workload = self._read(namespace, name, topology, deadline)
        if workload is None or workload.marked_for_deletion or workload.has_finalizer:
            return False

        body = copy.deepcopy(raw)
        body["metadata"]["finalizers"] = workload.finalizers + [workload.finalizer]
        try:
            self.store.replace_object(workload_kind(topology), namespace, name, body, deadline=deadline)
        except StoreError as e:
            if e.is_not_found:
                logger.info(f"[{namespace}/{name}] Workload gone before finalizer was added")
                return False
            record_error(e)
            logger.error(f"[{namespace}/{name}] Could not add finalizer {workload.finalizer}: {e}")
            raise
        logger.info(f"[{namespace}/{name}] Finalizer {workload.finalizer} added")
        return True

    # -----------------------------------------------------------------------
    # Deletion
    # -----------------------------------------------------------------------

    def handle(self, namespace: str, name: str, topology: Topology, deadline: Optional[float] = None) -> FinalizerState:
        """
        Drive one invocation of the state machine against the current
        descriptor. Returns the state the workload is in afterwards.
        """
        _, workload = self._read(namespace, name, topology, deadline)
        if workload is None:
            return FinalizerState.RELEASED

        state = state_of(workload)
        if state != FinalizerState.TEARDOWN_IN_PROGRESS:
            return state

        logger.info(f"[{namespace}/{name}] Finalizing {topology.value} workload")
        try:
            self.teardown(workload, deadline)
            self.remove_finalizer(namespace, name, topology, deadline)
        except StoreError:
            record_teardown(topology.value, "failed")
            raise
        record_teardown(topology.value, "success")
        return FinalizerState.RELEASED

    def teardown(self, workload: WorkloadDescriptor, deadline: Optional[float] = None):
        """Steps 1-4, strictly in order."""
        ns, name = workload.namespace, workload.name

        for svc in service_names(name):
            self._delete("Service", svc, ns, self.store.delete_service, deadline)

        for pvc in pvc_names(name, workload.topology, workload.replicas):
            self._delete("PersistentVolumeClaim", pvc, ns, self.store.delete_pvc, deadline)

        self._delete(
            GRAFANA_DASHBOARD.kind,
            dashboard_name(name, workload.topology),
            ns,
            partial(self.store.delete_object, GRAFANA_DASHBOARD),
            deadline,
        )

        for target in monitor_targets(name, workload.topology):
            self._delete(
                SERVICE_MONITOR.kind,
                target.name,
                ns,
                partial(self.store.delete_object, SERVICE_MONITOR),
                deadline,
            )

    def remove_finalizer(self, namespace: str, name: str, topology: Topology, deadline: Optional[float] = None) -> bool:
        """
        Step 5. Re-reads the descriptor so the replace carries the latest
        resourceVersion; a Conflict is propagated for the caller to retry.
        """
        raw, workload = self._read(namespace, name, topology, deadline)
        if workload is None or not workload.has_finalizer:
            return False

        body = copy.deepcopy(raw)
        body["metadata"]["finalizers"] = [f for f in workload.finalizers if f != workload.finalizer]
        try:
            self.store.replace_object(workload_kind(topology), namespace, name, body, deadline=deadline)
        except StoreError as e:
            if e.is_not_found:
                return False
            record_error(e)
            logger.error(f"[{namespace}/{name}] Could not remove finalizer {workload.finalizer}: {e}")
            raise
        logger.info(f"[{namespace}/{name}] Finalizer {workload.finalizer} removed")
        return True

    def _delete(self, what: str, obj: str, namespace: str, delete: Callable, deadline: Optional[float]):
        try:
            delete(namespace, obj, deadline=deadline)
            logger.info(f"[{namespace}/{obj}] {what} deleted")
        except StoreError as e:
            if e.is_not_found:
                logger.info(f"[{namespace}/{obj}] {what} already gone")
                return
            record_error(e)
            logger.error(f"[{namespace}/{obj}] Could not delete {what}: {e}")
            raise
