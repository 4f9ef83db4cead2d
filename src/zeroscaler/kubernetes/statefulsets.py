"""Kubernetes StatefulSets handling module.

This module wraps the two StatefulSet operations the proxy needs: reading the
replica status and setting the desired replica count.
"""

import logging

from kubernetes import client
from kubernetes.client.exceptions import ApiException
from pydantic import BaseModel, ConfigDict, Field
from urllib3.exceptions import HTTPError

from zeroscaler.kubernetes.connection import KubernetesConnection

logger = logging.getLogger(__name__)


class OrchestrationError(Exception):
    """Raised when the Kubernetes API call for a StatefulSet fails."""

    def __init__(self, message: str, namespace: str, name: str):
        super().__init__(message)
        self.namespace = namespace
        self.name = name


class WorkloadNotFoundError(OrchestrationError):
    """Raised when the StatefulSet does not exist."""


class ReplicaStatus(BaseModel):
    """Replica counts of a StatefulSet at the time it was read.

    Attributes:
        desired: Replicas requested in the spec.
        current: Replicas created by the StatefulSet controller.
        ready: Replicas reporting ready.
    """
    model_config = ConfigDict(frozen=True)

    desired: int = Field(default=0, ge=0)
    current: int = Field(default=0, ge=0)
    ready: int = Field(default=0, ge=0)

    @classmethod
    def from_statefulset(cls, statefulset: client.V1StatefulSet) -> "ReplicaStatus":
        """Build a status snapshot from a StatefulSet object.

        The API omits counts that are zero, so missing values map to 0.

        Args:
            statefulset: The StatefulSet returned by the API.

        Returns:
            The replica status.
        """
        spec = statefulset.spec
        status = statefulset.status
        return cls(
            desired=(spec.replicas if spec is not None else None) or 0,
            current=(status.replicas if status is not None else None) or 0,
            ready=(status.ready_replicas if status is not None else None) or 0,
        )


class StatefulSetClient:
    """Client for reading and scaling a StatefulSet.

    Errors are translated into OrchestrationError (or WorkloadNotFoundError for a
    missing StatefulSet) and passed through without retries.
    """

    RESOURCE_KIND = "StatefulSet"

    def __init__(self, connection: KubernetesConnection):
        """Initialize the StatefulSet client.

        Args:
            connection: The Kubernetes connection to use
        """
        self.connection = connection
        self.api = connection.apps_v1_api

    def get_status(self, namespace: str, name: str) -> ReplicaStatus:
        """Get the replica status of a StatefulSet.

        Args:
            namespace: Namespace of the StatefulSet.
            name: Name of the StatefulSet.

        Returns:
            A fresh replica status snapshot.

        Raises:
            WorkloadNotFoundError: If the StatefulSet does not exist.
            OrchestrationError: If the API call fails.
        """
        try:
            statefulset = self.api.read_namespaced_stateful_set(name, namespace)
        except ApiException as e:
            if e.status == 404:
                raise WorkloadNotFoundError(
                    f"{self.RESOURCE_KIND} {namespace}/{name} not found", namespace, name
                ) from e
            raise OrchestrationError(
                f"Error getting {self.RESOURCE_KIND} {namespace}/{name}: {e.status} {e.reason}", namespace, name
            ) from e
        except HTTPError as e:
            raise OrchestrationError(
                f"Error getting {self.RESOURCE_KIND} {namespace}/{name}: {e}", namespace, name
            ) from e
        return ReplicaStatus.from_statefulset(statefulset)

    def set_desired_replicas(self, namespace: str, name: str, replicas: int) -> ReplicaStatus:
        """Set the desired replica count of a StatefulSet.

        The patch sets the count unconditionally, so repeating it is harmless.

        Args:
            namespace: Namespace of the StatefulSet.
            name: Name of the StatefulSet.
            replicas: The number of replicas to set.

        Returns:
            The replica status returned by the patch.

        Raises:
            WorkloadNotFoundError: If the StatefulSet does not exist.
            OrchestrationError: If the API call fails.
        """
        if replicas < 0:
            raise ValueError("Replica count must not be negative")
        logger.debug(f"Patching {self.RESOURCE_KIND} {namespace}/{name} to {replicas} replicas")
        try:
            statefulset = self.api.patch_namespaced_stateful_set(
                name=name,
                namespace=namespace,
                body={"spec": {"replicas": replicas}},
            )
        except ApiException as e:
            if e.status == 404:
                raise WorkloadNotFoundError(
                    f"{self.RESOURCE_KIND} {namespace}/{name} not found", namespace, name
                ) from e
            raise OrchestrationError(
                f"Error setting replicas for {self.RESOURCE_KIND} {namespace}/{name}: {e.status} {e.reason}",
                namespace,
                name,
            ) from e
        except HTTPError as e:
            raise OrchestrationError(
                f"Error setting replicas for {self.RESOURCE_KIND} {namespace}/{name}: {e}", namespace, name
            ) from e
        return ReplicaStatus.from_statefulset(statefulset)
