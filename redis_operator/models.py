"""
Pydantic models for the managed workload as read from its custom resource.
"""
from pydantic import BaseModel, Field
from typing import Optional, List, Dict

from redis_operator.config import settings
from redis_operator.errors import ErrorKind, StoreError
from redis_operator.naming import Topology, Role, CLUSTER_ROLES, finalizer_token


KIND_TOPOLOGY = {
    "Redis": Topology.STANDALONE,
    "RedisCluster": Topology.CLUSTER,
}


class WorkloadDescriptor(BaseModel):
    """Read-only view of a Redis / RedisCluster resource."""
    namespace: str
    name: str
    topology: Topology
    owner: str = Field(default=settings.DEFAULT_OWNER)
    replicas: Dict[Role, int] = Field(default_factory=dict)
    deletionTimestamp: Optional[str] = None
    finalizers: List[str] = Field(default_factory=list)
    resourceVersion: Optional[str] = None

    @property
    def finalizer(self) -> str:
        return finalizer_token(self.topology)

    @property
    def marked_for_deletion(self) -> bool:
        return self.deletionTimestamp is not None

    @property
    def has_finalizer(self) -> bool:
        return self.finalizer in self.finalizers

    def replica_count(self, role: Role) -> int:
        return self.replicas.get(role, 0)


def _replica_counts(spec: dict) -> Dict[Role, int]:
    """Per-role replicas fall back to clusterSize when the role does not set its own."""
    size = spec.get("clusterSize") or 0
    counts = {}
    for role in CLUSTER_ROLES:
        role_spec = spec.get(f"redis{role.value.capitalize()}") or {}
        replicas = role_spec.get("replicas")
        counts[role] = int(replicas if replicas is not None else size)
    return counts


def parse_workload(item: dict, topology: Optional[Topology] = None) -> WorkloadDescriptor:
    """
    Convert a raw custom-resource dict into a WorkloadDescriptor.
    A body that cannot be read as a workload raises StoreError(MALFORMED).
    """
    try:
        meta = item.get("metadata") or {}
        spec = item.get("spec") or {}
        if topology is None:
            topology = KIND_TOPOLOGY[item["kind"]]
        annotations = meta.get("annotations") or {}
        owner = annotations.get("owner") or annotations.get("userId") or settings.DEFAULT_OWNER
        return WorkloadDescriptor(
            namespace=meta["namespace"],
            name=meta["name"],
            topology=topology,
            owner=owner,
            replicas=_replica_counts(spec) if topology == Topology.CLUSTER else {},
            deletionTimestamp=meta.get("deletionTimestamp"),
            finalizers=list(meta.get("finalizers") or []),
            resourceVersion=meta.get("resourceVersion"),
        )
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise StoreError(ErrorKind.MALFORMED, f"unreadable workload body: {e}") from e
