"""Helpers around the Kubernetes Python client."""

import logging

import kubernetes
from kubernetes import client

logger = logging.getLogger(__name__)


def load_kube_config(kubeconfig: str = ""):
    """Load in-cluster configuration, falling back to a kubeconfig file."""
    if kubeconfig:
        kubernetes.config.load_kube_config(config_file=kubeconfig)
        logger.info(f"Loaded Kubernetes config from {kubeconfig}")
        return

    try:
        kubernetes.config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes config")
    except kubernetes.config.ConfigException:
        kubernetes.config.load_kube_config()
        logger.info("Loaded local Kubernetes config")


def to_dict(obj):
    """Serialize a Kubernetes client model into its JSON representation."""
    if obj is None or isinstance(obj, dict):
        return obj
    return client.ApiClient().sanitize_for_serialization(obj)


def is_not_found(e: Exception) -> bool:
    return isinstance(e, client.exceptions.ApiException) and e.status == 404


def is_already_exists(e: Exception) -> bool:
    return isinstance(e, client.exceptions.ApiException) and e.status == 409
