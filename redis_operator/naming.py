"""
Naming & topology resolver: canonical names and labels for everything the
operator creates or tears down for a workload.

All functions are pure: the same (workload, topology, role) always yields the
same name, so get / create / delete agree without any stored mapping.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional


class Topology(str, Enum):
    STANDALONE = "standalone"
    CLUSTER = "cluster"


class Role(str, Enum):
    LEADER = "leader"
    FOLLOWER = "follower"


CLUSTER_ROLES = (Role.LEADER, Role.FOLLOWER)

FINALIZERS = {
    Topology.STANDALONE: "redisFinalizer",
    Topology.CLUSTER: "redisClusterFinalizer",
}


@dataclass(frozen=True)
class MonitorTarget:
    """One ServiceMonitor: its object name and the pod labels it selects."""
    name: str
    match_label: str
    setup_type: str

    @property
    def selector(self) -> Dict[str, str]:
        return {"app": self.match_label, "redis_setup_type": self.setup_type}


def finalizer_token(topology: Topology) -> str:
    return FINALIZERS[topology]


def dashboard_name(workload: str, topology: Topology) -> str:
    return f"{workload}-{topology.value}"


def monitor_target(workload: str, topology: Topology, role: Optional[Role] = None) -> MonitorTarget:
    """
    Standalone: ``<workload>-standalone`` selecting ``app=<workload>``.
    Cluster: ``<workload>-<role>`` selecting ``app=<workload>-<role>``.
    """
    if topology == Topology.CLUSTER:
        if role not in CLUSTER_ROLES:
            raise ValueError(f"cluster monitor needs a role, got {role!r}")
        qualified = f"{workload}-{Role(role).value}"
        return MonitorTarget(name=qualified, match_label=qualified, setup_type=topology.value)
    return MonitorTarget(
        name=f"{workload}-{topology.value}",
        match_label=workload,
        setup_type=topology.value,
    )


def monitor_targets(workload: str, topology: Topology) -> List[MonitorTarget]:
    if topology == Topology.CLUSTER:
        return [monitor_target(workload, topology, role) for role in CLUSTER_ROLES]
    return [monitor_target(workload, topology)]


def service_names(workload: str) -> List[str]:
    """Primary and headless services."""
    return [workload, f"{workload}-headless"]


def pvc_names(workload: str, topology: Topology, replicas: Optional[Dict[Role, int]] = None) -> List[str]:
    """
    Storage claims created by the workload's StatefulSet volume templates.

    Standalone owns ``<workload>-<workload>-0``. Cluster owns one claim per
    (role, index), named after the role's StatefulSet and pod.
    """
    if topology == Topology.STANDALONE:
        return [f"{workload}-{workload}-0"]
    replicas = replicas or {}
    names = []
    for role in CLUSTER_ROLES:
        sts = f"{workload}-{role.value}"
        for i in range(int(replicas.get(role, 0))):
            names.append(f"{sts}-{sts}-{i}")
    return names
