"""
Redis Operator — kopf wiring for the reconciliation core

Architecture:
  Redis / RedisCluster CRD → Operator watches →
    Create / Resume / Update:
      1. Attach finalizer token (redisFinalizer / redisClusterFinalizer)
      2. Ensure GrafanaDashboard exists
      3. Ensure ServiceMonitor(s) exist

    Deletion marker observed (watch event):
      Finalizer orchestrator tears down Services, PVCs, dashboard, monitors,
      then releases the token so the API server can drop the workload

    Resync (timer loop):
      Re-drives teardown for every deletion-marked workload still holding
      its token. This is the retry path for failed finalizations.

Design Principles:
  - Idempotent: every step checks before creating, NotFound on delete is done
  - No kopf-owned finalizer: the token is the operator's own, removed last
  - Injected store: handlers use the store / synchronizer / orchestrator
    built once at startup and carried in kopf's memo
  - Transient errors on create/update → TemporaryError with backoff
"""

import asyncio
from contextlib import contextmanager
import logging
import threading

import kopf
import uvicorn

from redis_operator.config import settings as cfg
from redis_operator.errors import StoreError
from redis_operator.models import parse_workload
from redis_operator.naming import Topology, finalizer_token
from redis_operator.services.finalizer import FinalizerOrchestrator, FinalizerState, state_of
from redis_operator.services.kubernetes_service import (
    KubernetesObjectStore,
    deadline_after,
    workload_kind,
)
from redis_operator.services.monitoring import MonitoringSynchronizer

logger = logging.getLogger("redis-operator")


# ---------------------------------------------------------------------------
# Kopf operator settings
# ---------------------------------------------------------------------------

def build_components(memo, store: KubernetesObjectStore):
    memo.store = store
    memo.synchronizer = MonitoringSynchronizer(store)
    memo.orchestrator = FinalizerOrchestrator(store)


def _serve_health():
    from redis_operator.main import app
    app.state.ready = True
    uvicorn.run(app, host=cfg.API_HOST, port=cfg.API_PORT, log_level="info")


@kopf.on.startup()
async def configure(settings: kopf.OperatorSettings, memo: kopf.Memo, **kwargs):
    settings.posting.enabled = True
    settings.execution.max_workers = cfg.MAX_WORKERS

    build_components(memo, KubernetesObjectStore.from_config())

    threading.Thread(target=_serve_health, daemon=True).start()
    memo.resync_task = asyncio.create_task(_resync_loop(memo))
    logger.info(
        f"Redis Operator started (max_workers={cfg.MAX_WORKERS}, "
        f"resync={cfg.RESYNC_INTERVAL}s, monitoring={cfg.MONITORING_ENABLED})"
    )


@kopf.on.cleanup()
async def shutdown(memo: kopf.Memo, **kwargs):
    task = getattr(memo, "resync_task", None)
    if task is not None:
        task.cancel()
    logger.info("Redis Operator stopped")


# ---------------------------------------------------------------------------
# CREATE / RESUME / UPDATE — finalizer + dependent monitoring objects
# ---------------------------------------------------------------------------

def reconcile_workload(topology: Topology, body, memo, logger):
    meta = body.get("metadata") or {}
    ns, name = meta.get("namespace"), meta.get("name")
    deadline = deadline_after(cfg.RECONCILE_TIMEOUT)

    try:
        workload = parse_workload(dict(body), topology)
        memo.orchestrator.ensure_finalizer(ns, name, topology, deadline)
        if cfg.MONITORING_ENABLED:
            memo.synchronizer.ensure_dashboard(ns, workload.owner, name, topology, deadline)
            memo.synchronizer.ensure_monitor(ns, workload.owner, name, topology, deadline)
    except StoreError as e:
        raise kopf.TemporaryError(f"Reconcile of {ns}/{name} failed: {e}", delay=cfg.RETRY_DELAY)

    logger.info(f"[{ns}/{name}] {topology.value} workload in-sync")


@kopf.on.create(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.REDIS_PLURAL)
@kopf.on.resume(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.REDIS_PLURAL)
@kopf.on.update(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.REDIS_PLURAL)
def reconcile_redis(body, memo, logger, **kwargs):
    reconcile_workload(Topology.STANDALONE, body, memo, logger)


@kopf.on.create(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.REDIS_CLUSTER_PLURAL)
@kopf.on.resume(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.REDIS_CLUSTER_PLURAL)
@kopf.on.update(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.REDIS_CLUSTER_PLURAL)
def reconcile_redis_cluster(body, memo, logger, **kwargs):
    reconcile_workload(Topology.CLUSTER, body, memo, logger)


# ---------------------------------------------------------------------------
# DELETION — finalizer-gated teardown
# ---------------------------------------------------------------------------

_finalizing = set()
_finalizing_lock = threading.Lock()


@contextmanager
def finalizing(topology: Topology, namespace: str, name: str):
    """
    Claim a workload for one teardown run. Yields False if the event handler
    or the resync sweep is already finalizing it, so one key has one worker.
    """
    key = (topology, namespace, name)
    with _finalizing_lock:
        claimed = key not in _finalizing
        if claimed:
            _finalizing.add(key)
    try:
        yield claimed
    finally:
        if claimed:
            with _finalizing_lock:
                _finalizing.discard(key)


def finalize_workload(topology: Topology, event: dict, memo, logger):
    if event.get("type") == "DELETED":
        return
    meta = (event.get("object") or {}).get("metadata") or {}
    if not meta.get("deletionTimestamp"):
        return
    if finalizer_token(topology) not in (meta.get("finalizers") or []):
        return

    ns, name = meta["namespace"], meta["name"]
    with finalizing(topology, ns, name) as claimed:
        if not claimed:
            logger.info(f"[{ns}/{name}] Finalization already running")
            return
        try:
            state = memo.orchestrator.handle(ns, name, topology, deadline_after(cfg.RECONCILE_TIMEOUT))
        except StoreError as e:
            logger.error(f"[{ns}/{name}] Finalization failed, will retry on resync: {e}")
            return
    logger.info(f"[{ns}/{name}] Finalization state: {state.value}")


@kopf.on.event(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.REDIS_PLURAL)
def finalize_redis(event, memo, logger, **kwargs):
    finalize_workload(Topology.STANDALONE, event, memo, logger)


@kopf.on.event(cfg.CRD_GROUP, cfg.CRD_VERSION, cfg.REDIS_CLUSTER_PLURAL)
def finalize_redis_cluster(event, memo, logger, **kwargs):
    finalize_workload(Topology.CLUSTER, event, memo, logger)


# ---------------------------------------------------------------------------
# RESYNC — retry path for finalizations that failed
# ---------------------------------------------------------------------------

def finalize_pending(orchestrator: FinalizerOrchestrator) -> int:
    """
    Drive teardown for every deletion-marked workload still holding its
    token. A failure on one workload is logged and does not stop the sweep.
    Returns the number of workloads released.
    """
    released = 0
    for topology in Topology:
        for item in orchestrator.store.list_objects(workload_kind(topology)):
            meta = item.get("metadata") or {}
            ref = f"{meta.get('namespace')}/{meta.get('name')}"
            try:
                workload = parse_workload(item, topology)
                if state_of(workload) != FinalizerState.TEARDOWN_IN_PROGRESS:
                    continue
                with finalizing(topology, workload.namespace, workload.name) as claimed:
                    if not claimed:
                        continue
                    state = orchestrator.handle(
                        workload.namespace, workload.name, topology, deadline_after(cfg.RECONCILE_TIMEOUT)
                    )
            except StoreError as e:
                logger.error(f"[{ref}] Resync finalization failed: {e}")
                continue
            if state == FinalizerState.RELEASED:
                released += 1
    return released


async def _resync_loop(memo):
    while True:
        await asyncio.sleep(cfg.RESYNC_INTERVAL)
        try:
            released = await asyncio.to_thread(finalize_pending, memo.orchestrator)
            if released:
                logger.info(f"Resync released {released} workload(s)")
        except StoreError as e:
            logger.error(f"Resync failed: {e}")
        except Exception:
            logger.exception("Resync sweep crashed, retrying next interval")


def main():
    logging.basicConfig(
        level=cfg.LOG_LEVEL,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    kopf.run(clusterwide=True)


if __name__ == "__main__":
    main()
