"""Kubernetes client module for zeroscaler.

This module handles all interactions with the Kubernetes API.
"""

from zeroscaler.kubernetes.connection import KubernetesConnection
from zeroscaler.kubernetes.statefulsets import (
    OrchestrationError,
    ReplicaStatus,
    StatefulSetClient,
    WorkloadNotFoundError,
)

__all__ = [
    "KubernetesConnection",
    "OrchestrationError",
    "ReplicaStatus",
    "StatefulSetClient",
    "WorkloadNotFoundError",
]
