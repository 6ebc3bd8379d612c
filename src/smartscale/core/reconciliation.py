#!/usr/bin/env python3
"""
Reconciliation of in-flight scaling actions

Runs at the start of every locked tick while an action is recorded. A
scale-up is completed only once its instances are in inventory and their
nodes report Ready; a scale-down left behind by a crashed invocation is
resumed, draining each target before it is terminated. Anything still stuck after the verification timeout is abandoned
through fail_scaling.
"""

import logging
from enum import Enum
from typing import Dict, List, Optional

from prometheus_client import Counter

from smartscale.database import (
    ClusterState,
    ClusterStateStore,
    ScaleUpAction,
    ScaleDownAction,
    ScalingEventType,
    WorkerNode
)
from .drainer import NodeDrainer
from .kubernetes_api import KubernetesGateway
from .provisioner import ComputeProvisioner

logger = logging.getLogger(__name__)

RECONCILIATION_OUTCOMES = Counter(
    'smartscale_reconciliation_outcomes_total',
    'Outcomes of in-flight action reconciliation',
    ['action', 'outcome']
)


class ReconcileOutcome(str, Enum):
    IDLE = "idle"
    WAITING = "waiting"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class ActionReconciler:
    """Drives a recorded action to completion or abandonment"""

    def __init__(
        self,
        store: ClusterStateStore,
        provisioner: ComputeProvisioner,
        kubernetes: KubernetesGateway,
        drainer: NodeDrainer,
        verification_timeout: int = 600
    ):
        """
        Initialize reconciler

        Args:
            store: Cluster state store
            provisioner: Source of worker inventory
            kubernetes: Source of node readiness
            drainer: Drains scale-down targets before termination
            verification_timeout: Seconds after which an unfinished action is abandoned
        """
        self.store = store
        self.provisioner = provisioner
        self.kubernetes = kubernetes
        self.drainer = drainer
        self.verification_timeout = verification_timeout

    def reconcile(self, state: ClusterState, now: int) -> ReconcileOutcome:
        """
        Advance the in-flight action, if any

        Raises:
            ConditionFailedError: If another owner changed the record meanwhile
            StateStoreError: If the store is unreachable
        """
        action = state.action
        if isinstance(action, ScaleUpAction):
            outcome = self._reconcile_scale_up(action, now)
        elif isinstance(action, ScaleDownAction):
            outcome = self._reconcile_scale_down(action, now)
        else:
            return ReconcileOutcome.IDLE

        RECONCILIATION_OUTCOMES.labels(action=action.kind, outcome=outcome.value).inc()
        return outcome

    def _reconcile_scale_up(self, action: ScaleUpAction, now: int) -> ReconcileOutcome:
        elapsed = now - action.started_epoch

        if action.launched_instance_ids and self._launched_nodes_ready(action.launched_instance_ids):
            self.store.complete_scale_up(action.action_id, now)
            self.store.record_event(
                ScalingEventType.SCALE_UP_COMPLETED,
                action.action_id,
                {"instance_ids": action.launched_instance_ids, "elapsed": elapsed}
            )
            logger.info(f"Scale-up {action.action_id} complete after {elapsed}s")
            return ReconcileOutcome.COMPLETED

        if elapsed >= self.verification_timeout:
            reason = "no instances recorded" if not action.launched_instance_ids else "nodes never became ready"
            return self._abandon(action.action_id, now, elapsed, reason)

        logger.info(f"Scale-up {action.action_id} still verifying ({elapsed}s elapsed)")
        return ReconcileOutcome.WAITING

    def _launched_nodes_ready(self, instance_ids: List[str]) -> bool:
        """True when every launched instance is live and its node is Ready"""
        try:
            inventory = {worker.instance_id: worker for worker in self.provisioner.list_workers()}
        except Exception as e:
            logger.warning(f"Could not list inventory for verification: {e}")
            return False

        missing = [instance_id for instance_id in instance_ids if instance_id not in inventory]
        if missing:
            logger.info(f"Launched instances not yet in inventory: {missing}")
            return False

        try:
            ready_nodes = self.kubernetes.ready_node_names()
        except Exception as e:
            logger.warning(f"Could not read node readiness: {e}")
            return False

        not_ready = [
            inventory[instance_id].node_name
            for instance_id in instance_ids
            if inventory[instance_id].node_name not in ready_nodes
        ]
        if not_ready:
            logger.info(f"Nodes not Ready yet: {not_ready}")
            return False
        return True

    def _reconcile_scale_down(self, action: ScaleDownAction, now: int) -> ReconcileOutcome:
        elapsed = now - action.started_epoch
        live_workers = self._live_workers()

        if live_workers is not None:
            for instance_id in sorted(action.pending_instance_ids):
                worker = live_workers.get(instance_id)
                if worker is not None:
                    self._drain(worker)
                    try:
                        self.provisioner.terminate(instance_id)
                    except Exception as e:
                        logger.warning(f"Retry termination of {instance_id} failed: {e}")
                        continue
                self.store.mark_scale_down_completed(action.action_id, instance_id)
                action.completed_instance_ids.add(instance_id)

            if not action.pending_instance_ids:
                self.store.complete_scale_down(action.action_id, now)
                self.store.record_event(
                    ScalingEventType.SCALE_DOWN_COMPLETED,
                    action.action_id,
                    {"instance_ids": sorted(action.target_instance_ids), "resumed": True}
                )
                logger.info(f"Resumed scale-down {action.action_id} complete")
                return ReconcileOutcome.COMPLETED

        if elapsed >= self.verification_timeout:
            return self._abandon(action.action_id, now, elapsed, "targets could not be terminated")

        logger.info(f"Scale-down {action.action_id} pending: {sorted(action.pending_instance_ids)}")
        return ReconcileOutcome.WAITING

    def _live_workers(self) -> Optional[Dict[str, WorkerNode]]:
        try:
            return {worker.instance_id: worker for worker in self.provisioner.list_workers()}
        except Exception as e:
            logger.warning(f"Could not list inventory for scale-down recovery: {e}")
            return None

    def _drain(self, worker: WorkerNode):
        """Best-effort; a failed drain never blocks termination"""
        try:
            self.drainer.drain(worker.node_name)
        except Exception as e:
            logger.warning(f"Drain of {worker.node_name} before termination failed: {e}")

    def _abandon(self, action_id: str, now: int, elapsed: int, reason: str) -> ReconcileOutcome:
        logger.error(f"Action {action_id} stuck for {elapsed}s ({reason}), abandoning")
        self.store.fail_scaling(now)
        self.store.record_event(
            ScalingEventType.SCALING_FAILED,
            action_id,
            {"reason": reason, "elapsed": elapsed}
        )
        return ReconcileOutcome.ABANDONED
