from __future__ import annotations

import logging

from kubernetes import client, config
from kubernetes.client import CoreV1Api
from kubernetes.config.config_exception import ConfigException

LOGGER = logging.getLogger(__name__)


class CredentialsError(RuntimeError):
    """Raised when cluster access credentials cannot be loaded or parsed."""


def load_kube_configuration(kubeconfig_path: str | None = None) -> None:
    """Load Kubernetes client configuration.

    An explicit *kubeconfig_path* is loaded as-is. Without one, in-cluster
    config is tried first (running inside a pod), falling back to the local
    kubeconfig for development.
    """
    if kubeconfig_path:
        try:
            config.load_kube_config(config_file=kubeconfig_path)
        except Exception as exc:
            raise CredentialsError(
                f"Failed to load kubeconfig {kubeconfig_path}: {exc}"
            ) from exc
        LOGGER.info("Loaded kubeconfig from %s", kubeconfig_path)
        return

    try:
        config.load_incluster_config()
        LOGGER.info("Loaded in-cluster Kubernetes configuration")
        return
    except ConfigException:
        LOGGER.debug("In-cluster configuration unavailable, trying local kubeconfig")

    try:
        config.load_kube_config()
    except Exception as exc:
        raise CredentialsError(f"Failed to load local kubeconfig: {exc}") from exc
    LOGGER.info("Loaded local kubeconfig")


def build_core_api() -> CoreV1Api:
    """Return a CoreV1 API client using the active kube configuration.

    urllib3 retries are disabled so one list call is one HTTP attempt and
    the request timeout bounds the whole fetch; the next tick is the retry.
    """
    configuration = client.Configuration.get_default_copy()
    configuration.retries = 0
    return client.CoreV1Api(api_client=client.ApiClient(configuration))
