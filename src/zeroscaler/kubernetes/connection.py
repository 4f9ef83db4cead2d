"""Kubernetes connection management.

This module handles the connection to the Kubernetes API.
"""
import logging

from kubernetes import client, config

logger = logging.getLogger(__name__)


class KubernetesConnection:
    """Connection manager for the Kubernetes API.

    This class manages authentication and connection to the Kubernetes API.
    """

    def __init__(self, kubeconfig: str | None = None):
        """Initialize the Kubernetes connection.

        Attempts to connect to the Kubernetes API using in-cluster config first,
        falling back to kubeconfig for local development.

        Args:
            kubeconfig: Optional path to a kubeconfig file. If None, the default
                kubeconfig location (or the KUBECONFIG variable) is used.
        """
        self.kubeconfig = kubeconfig
        self._setup_connection()

    def _setup_connection(self) -> None:
        """Set up the connection to the Kubernetes API."""
        try:
            # Try to load in-cluster config first (for when running in a pod)
            config.load_incluster_config()
            logger.info("Using in-cluster configuration")
        except config.ConfigException:
            try:
                # Fall back to kubeconfig for local development
                config.load_kube_config(config_file=self.kubeconfig)
                logger.info(f"Using kubeconfig configuration ({self.kubeconfig or 'default location'})")
            except (config.ConfigException, OSError) as e:
                logger.error(
                    "Failed to load Kubernetes configuration. Ensure that the kubeconfig file is available and valid."
                )
                raise RuntimeError(
                    "Kubernetes configuration error: kubeconfig file is missing or invalid.") from e

        self.apps_v1_api = client.AppsV1Api()
        self.host = self.apps_v1_api.api_client.configuration.host
