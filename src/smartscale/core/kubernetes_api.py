#!/usr/bin/env python3
"""
Thin gateway over the Kubernetes core API used for draining and readiness
"""

import logging
import os
from typing import Callable, List, Optional, Set

from kubernetes import client
from kubernetes import config as k8s_config

from .retry import RetryPolicy, NO_RETRY

logger = logging.getLogger(__name__)


def build_core_api(kube_settings, token_reader: Optional[Callable[[str], str]] = None) -> client.CoreV1Api:
    """
    Build a CoreV1Api client

    Resolution order: in-cluster config, explicit API server with a bearer
    token read from the blob store, then a kubeconfig file.
    """
    if kube_settings.in_cluster:
        logger.info("Loading in-cluster config")
        k8s_config.load_incluster_config()
        return client.CoreV1Api()

    if kube_settings.api_server and token_reader:
        logger.info(f"Using API server {kube_settings.api_server} with bearer token")
        configuration = client.Configuration()
        configuration.host = kube_settings.api_server
        configuration.verify_ssl = kube_settings.verify_ssl
        configuration.api_key = {"authorization": token_reader(kube_settings.token_key)}
        configuration.api_key_prefix = {"authorization": "Bearer"}
        return client.CoreV1Api(client.ApiClient(configuration))

    kubeconfig_path = kube_settings.kubeconfig_path
    if kubeconfig_path and not os.path.exists(kubeconfig_path):
        raise FileNotFoundError(f"Kubeconfig file not found: {kubeconfig_path}")
    logger.info(f"Loading kubeconfig from: {kubeconfig_path or 'default location'}")
    k8s_config.load_kube_config(config_file=kubeconfig_path)
    return client.CoreV1Api()


class KubernetesGateway:
    """Cordon, pod listing, eviction and node readiness"""

    def __init__(self, core_api: client.CoreV1Api, retry_policy: RetryPolicy = NO_RETRY,
                 request_timeout: int = 10):
        self.api = core_api
        self.retry_policy = retry_policy
        self.request_timeout = request_timeout

    def cordon(self, node_name: str) -> None:
        """Mark the node unschedulable"""
        self.retry_policy.call(
            self.api.patch_node,
            node_name,
            {"spec": {"unschedulable": True}},
            operation=f"cordon[{node_name}]",
            _request_timeout=self.request_timeout
        )
        logger.info(f"Marked node {node_name} as unschedulable")

    def list_pods_on_node(self, node_name: str) -> List[client.V1Pod]:
        pods = self.retry_policy.call(
            self.api.list_pod_for_all_namespaces,
            operation=f"list_pods[{node_name}]",
            field_selector=f"spec.nodeName={node_name}",
            _request_timeout=self.request_timeout
        )
        return list(pods.items or [])

    def evict(self, namespace: str, pod_name: str) -> bool:
        """Request eviction through the policy/v1 eviction subresource"""
        eviction = client.V1Eviction(
            metadata=client.V1ObjectMeta(name=pod_name, namespace=namespace)
        )
        try:
            self.retry_policy.call(
                self.api.create_namespaced_pod_eviction,
                name=pod_name,
                namespace=namespace,
                body=eviction,
                operation=f"evict[{namespace}/{pod_name}]",
                _request_timeout=self.request_timeout
            )
            return True
        except Exception as e:
            logger.warning(f"Could not evict pod {namespace}/{pod_name}: {e}")
            return False

    def ready_node_names(self) -> Set[str]:
        """Names of nodes reporting Ready=True"""
        nodes = self.retry_policy.call(
            self.api.list_node, operation="list_node", _request_timeout=self.request_timeout
        )
        ready = set()
        for node in nodes.items or []:
            for condition in (node.status.conditions or []) if node.status else []:
                if condition.type == "Ready" and condition.status == "True":
                    ready.add(node.metadata.name)
                    break
        return ready
