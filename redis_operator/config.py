"""
Operator settings, read once from the environment at import time.
Every knob has a default so the operator runs unconfigured in a dev cluster.
"""
import os
from dataclasses import dataclass


def _env_bool(key: str, default: str) -> bool:
    return os.environ.get(key, default).lower() == "true"


@dataclass(frozen=True)
class Settings:
    # Kubernetes
    KUBECONFIG: str = os.environ.get("KUBECONFIG", "")
    IN_CLUSTER: bool = _env_bool("IN_CLUSTER", "false")

    # CRDs of the managed workload
    CRD_GROUP: str = "redis.redis.opstreelabs.in"
    CRD_VERSION: str = "v1beta1"
    REDIS_PLURAL: str = "redis"
    REDIS_CLUSTER_PLURAL: str = "redisclusters"

    # Dependent monitoring objects
    GRAFANA_APP_NAME: str = os.environ.get("GRAFANA_APP_NAME", "grafana")
    DEFAULT_OWNER: str = os.environ.get("DEFAULT_OWNER", "redis-operator")
    EXPORTER_PORT: str = os.environ.get("EXPORTER_PORT", "redis-exporter")
    MONITORING_ENABLED: bool = _env_bool("MONITORING_ENABLED", "true")

    # Timeouts (seconds)
    API_TIMEOUT: float = float(os.environ.get("API_TIMEOUT", "30"))
    RECONCILE_TIMEOUT: float = float(os.environ.get("RECONCILE_TIMEOUT", "120"))

    # Scheduling
    RETRY_DELAY: int = int(os.environ.get("RETRY_DELAY", "15"))
    RESYNC_INTERVAL: int = int(os.environ.get("RESYNC_INTERVAL", "60"))
    MAX_WORKERS: int = int(os.environ.get("MAX_WORKERS", "3"))

    # Health / metrics API
    API_HOST: str = os.environ.get("API_HOST", "0.0.0.0")
    API_PORT: int = int(os.environ.get("API_PORT", "8080"))
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO").upper()


settings = Settings()
