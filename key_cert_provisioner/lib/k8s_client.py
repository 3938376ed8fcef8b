"""Kubernetes API client construction."""

from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException

from .errors import ConfigurationError
from .logging_config import LOGGER


def create_api_client() -> client.ApiClient:
    """Return an API client from the in-cluster service account.

    Falls back to the local kubeconfig when not running inside a pod.

    Raises:
        ConfigurationError: If neither configuration source is usable
    """
    try:
        config.load_incluster_config()
        LOGGER.debug("Loaded in-cluster Kubernetes configuration")
    except ConfigException:
        try:
            config.load_kube_config()
        except (ConfigException, OSError) as e:
            raise ConfigurationError(f"unable to load Kubernetes configuration: {e}") from e
        LOGGER.info("Not running in a cluster, using kubeconfig")
    return client.ApiClient()
