#!/usr/bin/env python3
"""
Node drainer: best-effort workload evacuation before termination
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List

from .kubernetes_api import KubernetesGateway

logger = logging.getLogger(__name__)

MIRROR_POD_ANNOTATION = "kubernetes.io/config.mirror"


@dataclass
class DrainResult:
    node_name: str
    cordoned: bool = False
    evicted: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def is_daemon_pod(pod) -> bool:
    """DaemonSet-owned or static (mirror) pods are not evicted"""
    metadata = pod.metadata
    for owner in metadata.owner_references or []:
        if owner.kind == "DaemonSet":
            return True
    return MIRROR_POD_ANNOTATION in (metadata.annotations or {})


class NodeDrainer:
    """Cordons a node, evicts its pods and waits a bounded grace period"""

    def __init__(self, kubernetes: KubernetesGateway, grace_period: float = 10,
                 sleep: Callable[[float], None] = time.sleep):
        self.kubernetes = kubernetes
        self.grace_period = grace_period
        self._sleep = sleep

    def drain(self, node_name: str) -> DrainResult:
        """
        Drain a node

        Nothing here raises: a failed cordon, pod listing or eviction is
        logged and the drain carries on, so termination is never blocked.
        """
        result = DrainResult(node_name=node_name)
        logger.info(f"Draining Kubernetes node: {node_name}")

        try:
            self.kubernetes.cordon(node_name)
            result.cordoned = True
        except Exception as e:
            logger.warning(f"Could not mark node {node_name} as unschedulable: {e}")

        try:
            pods = self.kubernetes.list_pods_on_node(node_name)
        except Exception as e:
            logger.warning(f"Could not list pods on {node_name}: {e}")
            pods = []

        for pod in pods:
            pod_ref = f"{pod.metadata.namespace}/{pod.metadata.name}"
            if is_daemon_pod(pod):
                result.skipped.append(pod_ref)
                continue
            if self.kubernetes.evict(pod.metadata.namespace, pod.metadata.name):
                result.evicted.append(pod_ref)
            else:
                result.failed.append(pod_ref)

        if self.grace_period:
            logger.info(f"Waiting {self.grace_period}s for pods on {node_name} to terminate")
            self._sleep(self.grace_period)

        logger.info(
            f"Drained {node_name}: evicted {len(result.evicted)}, "
            f"failed {len(result.failed)}, skipped {len(result.skipped)}"
        )
        return result
