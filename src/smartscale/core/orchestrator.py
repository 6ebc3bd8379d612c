#!/usr/bin/env python3
"""
Orchestrator: entry point for scheduled ticks and spot interruptions
"""

import concurrent.futures
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from prometheus_client import Counter, Gauge

from smartscale.database import ClusterStateStore, ScalingEventType, WorkerNode
from smartscale.exceptions import ConditionFailedError, ProvisioningError, StateStoreError
from smartscale.models.metrics import LoadSnapshot
from .blob_store import S3BlobStore
from .decision import Decision, DecisionType, ScaleDown, ScaleUp, ScalingPolicy, decide
from .drainer import NodeDrainer
from .logging_config import log_section, log_separator
from .metrics import MetricsGateway
from .provisioner import ComputeProvisioner
from .reconciliation import ActionReconciler

logger = logging.getLogger(__name__)

SCALING_DECISIONS = Counter('smartscale_scaling_decisions_total', 'Total scaling decisions', ['decision'])
TICK_OUTCOMES = Counter('smartscale_ticks_total', 'Control loop ticks by outcome', ['status'])
CURRENT_WORKERS = Gauge('smartscale_current_workers', 'Worker instances in inventory')
INTERRUPTIONS = Counter('smartscale_interruptions_total', 'Spot interruptions handled', ['replaced'])
ERRORS = Counter('smartscale_errors_total', 'Total errors', ['type'])


class Orchestrator:
    """Runs one control loop invocation per trigger"""

    def __init__(
        self,
        store: ClusterStateStore,
        metrics: MetricsGateway,
        provisioner: ComputeProvisioner,
        drainer: NodeDrainer,
        blob_store: S3BlobStore,
        reconciler: ActionReconciler,
        policy: ScalingPolicy,
        join_token_key: str = "node-token",
        lock_ttl: int = 300,
        dry_run: bool = False,
        clock: Callable[[], float] = time.time
    ):
        self.store = store
        self.metrics = metrics
        self.provisioner = provisioner
        self.drainer = drainer
        self.blob_store = blob_store
        self.reconciler = reconciler
        self.policy = policy
        self.join_token_key = join_token_key
        self.lock_ttl = lock_ttl
        self.dry_run = dry_run
        self._clock = clock
        self._tick_counter = 0

    def _now(self) -> int:
        return int(self._clock())

    # Scheduled tick

    def handle_tick(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Run lock -> reconcile -> fetch -> decide -> execute -> unlock

        Never raises; failures are reported in the returned dict and the next
        tick picks up whatever was left in flight.
        """
        self._tick_counter += 1
        log_separator(logger, f"AUTOSCALING TICK #{self._tick_counter}", 60)

        owner = request_id or uuid.uuid4().hex
        now = self._now()

        try:
            acquired = self.store.acquire_lock(owner, self.lock_ttl, now)
        except StateStoreError as e:
            logger.error(f"Lock acquisition failed: {e}")
            ERRORS.labels(type='state_store').inc()
            return self._result("skipped", now, detail=f"lock error: {e}")

        if not acquired:
            logger.info("Could not acquire lock, skipping tick")
            return self._result("skipped", now, detail="lock held by another invocation")

        try:
            return self._run_locked(now)
        except ConditionFailedError as e:
            logger.warning(f"Lost the race on the cluster record, aborting tick: {e}")
            return self._result("aborted", now, detail=str(e))
        except StateStoreError as e:
            logger.error(f"State store error, aborting tick: {e}")
            ERRORS.labels(type='state_store').inc()
            return self._result("error", now, detail=str(e))
        except Exception as e:
            logger.error(f"Unexpected error in tick: {e}", exc_info=True)
            ERRORS.labels(type='unexpected').inc()
            return self._result("error", now, detail=str(e))
        finally:
            self.store.release_lock(owner)

    def _run_locked(self, now: int) -> Dict[str, Any]:
        state = self.store.get_state()

        if state.scaling_in_progress:
            log_section(logger, "RECONCILIATION")
            outcome = self.reconciler.reconcile(state, now)
            return self._result(
                "reconciled", now,
                detail=outcome.value,
                action_id=state.action_id,
                phase=state.phase.value
            )

        log_section(logger, "METRICS COLLECTION")
        try:
            load, workers = self._fetch_inputs()
        except Exception as e:
            logger.error(f"Inventory fetch failed, skipping decision: {e}")
            ERRORS.labels(type='provisioner').inc()
            return self._result("error", now, detail=f"inventory unavailable: {e}")

        CURRENT_WORKERS.set(len(workers))
        self.store.record_worker_count(len(workers))

        log_section(logger, "SCALING DECISION")
        decision = decide(
            load.avg_cpu,
            load.pending_work,
            len(workers),
            state.last_scale_epoch,
            state.scaling_in_progress,
            now,
            self.policy
        )
        SCALING_DECISIONS.labels(decision=decision.type.value).inc()
        logger.info(f"Decision: {decision.type.value} ({decision.reason}) with {len(workers)} workers")

        if decision.type == DecisionType.NOOP:
            return self._result("noop", now, decision=decision, load=load)

        if self.dry_run:
            logger.info("Dry-run mode: skipping scaling execution")
            return self._result("dry_run", now, decision=decision, load=load)

        log_section(logger, "SCALING EXECUTION")
        if isinstance(decision, ScaleUp):
            return self._scale_up(decision, workers, now, load)
        return self._scale_down(decision, workers, now, load)

    def _fetch_inputs(self):
        """Read-only metrics and inventory fetches, issued concurrently"""
        with concurrent.futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="tick-fetch") as executor:
            load_future = executor.submit(self.metrics.collect)
            workers_future = executor.submit(self.provisioner.list_workers)
            workers = workers_future.result()
            try:
                load = load_future.result()
            except Exception as e:
                logger.error(f"Metrics collection failed, assuming idle cluster: {e}")
                load = LoadSnapshot()
        return load, workers

    def _scale_up(self, decision: ScaleUp, workers: List[WorkerNode], now: int,
                  load: LoadSnapshot) -> Dict[str, Any]:
        try:
            token = self.blob_store.read(self.join_token_key)
        except Exception as e:
            logger.error(f"Could not read join token, skipping scale-up: {e}")
            ERRORS.labels(type='blob_store').inc()
            return self._result("error", now, decision=decision, load=load, detail=f"join token unavailable: {e}")

        # Placement lookups are read-only; failing here must leave the record idle
        try:
            zone, subnet_id = self.provisioner.plan_placement(workers)
        except Exception as e:
            logger.error(f"Could not resolve placement, skipping scale-up: {e}")
            ERRORS.labels(type='placement').inc()
            return self._result("error", now, decision=decision, load=load, detail=f"placement unavailable: {e}")

        action_id = f"up-{now}-{uuid.uuid4().hex[:8]}"
        self.store.begin_scale_up(action_id, now)
        self.store.record_event(
            ScalingEventType.SCALE_UP_STARTED, action_id,
            {"reason": decision.reason, "zone": zone, "subnet_id": subnet_id}
        )

        try:
            instance_ids = self.provisioner.launch_in(decision.delta, token, zone, subnet_id)
        except ProvisioningError as e:
            logger.error(f"Scale-up {action_id} could not launch capacity: {e}")
            ERRORS.labels(type='provisioner').inc()
            self.store.fail_scaling(now)
            self.store.record_event(ScalingEventType.SCALING_FAILED, action_id, {"reason": str(e)})
            return self._result("error", now, decision=decision, load=load, action_id=action_id, detail=str(e))
        except Exception as e:
            # Outcome unknown (e.g. timeout); reconciliation decides later
            logger.error(f"Scale-up {action_id} launch outcome unknown: {e}")
            ERRORS.labels(type='provisioner').inc()
            return self._result("error", now, decision=decision, load=load, action_id=action_id, detail=str(e))

        self.store.record_scale_up_instances(action_id, instance_ids)
        logger.info(f"Scale-up {action_id} launched {instance_ids}; awaiting readiness")
        return self._result(
            "scale_up_started", now, decision=decision, load=load,
            action_id=action_id, instance_ids=instance_ids
        )

    def _scale_down(self, decision: ScaleDown, workers: List[WorkerNode], now: int,
                    load: LoadSnapshot) -> Dict[str, Any]:
        victim = self.select_victim(workers)
        if victim is None:
            return self._result("noop", now, decision=decision, load=load, detail="no worker to remove")

        action_id = f"down-{now}-{uuid.uuid4().hex[:8]}"
        self.store.begin_scale_down(action_id, now, [victim.instance_id])
        self.store.record_event(
            ScalingEventType.SCALE_DOWN_STARTED, action_id,
            {"reason": decision.reason, "instance_id": victim.instance_id}
        )

        self.drainer.drain(victim.node_name)

        try:
            self.provisioner.terminate(victim.instance_id)
        except Exception as e:
            logger.error(f"Terminate {victim.instance_id} failed, leaving {action_id} for reconciliation: {e}")
            ERRORS.labels(type='provisioner').inc()
            return self._result(
                "scale_down_incomplete", now, decision=decision, load=load,
                action_id=action_id, instance_ids=[victim.instance_id], detail=str(e)
            )

        self.store.mark_scale_down_completed(action_id, victim.instance_id)
        completed_at = self._now()
        self.store.complete_scale_down(action_id, completed_at)
        self.store.record_event(
            ScalingEventType.SCALE_DOWN_COMPLETED, action_id, {"instance_id": victim.instance_id}
        )
        logger.info(f"Scale-down {action_id} terminated {victim.instance_id}")
        return self._result(
            "scale_down_completed", now, decision=decision, load=load,
            action_id=action_id, instance_ids=[victim.instance_id]
        )

    @staticmethod
    def select_victim(workers: List[WorkerNode]) -> Optional[WorkerNode]:
        """Oldest worker by launch time"""
        if not workers:
            return None
        return sorted(workers, key=lambda w: (w.launch_time, w.instance_id))[0]

    # Spot interruption

    def handle_interruption(self, instance_id: str) -> Dict[str, Any]:
        """
        Compensate for an imminent spot reclaim

        Runs outside the lock and ignores cooldowns: drain the node if it is
        still in inventory, then launch one replacement.
        """
        log_separator(logger, f"SPOT INTERRUPTION {instance_id}", 60)
        now = self._now()
        result = {
            "instance_id": instance_id,
            "drained": False,
            "replacement_instance_ids": [],
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

        workers: Optional[List[WorkerNode]] = None
        try:
            workers = self.provisioner.list_workers()
        except Exception as e:
            logger.error(f"Inventory unavailable during interruption handling: {e}")

        target = next((w for w in workers or [] if w.instance_id == instance_id), None)
        if target:
            drain_result = self.drainer.drain(target.node_name)
            result["drained"] = True
            result["evicted"] = drain_result.evicted
        else:
            logger.info(f"{instance_id} not in inventory, skipping drain")

        survivors = [w for w in workers if w.instance_id != instance_id] if workers is not None else None
        try:
            token = self.blob_store.read(self.join_token_key)
            result["replacement_instance_ids"] = self.provisioner.launch(1, token, survivors)
            logger.info(f"Replacement for {instance_id}: {result['replacement_instance_ids']}")
        except Exception as e:
            logger.error(f"Replacement launch failed for {instance_id}: {e}")
            ERRORS.labels(type='replacement').inc()
            result["error"] = str(e)

        INTERRUPTIONS.labels(replaced=str(bool(result["replacement_instance_ids"])).lower()).inc()
        self.store.record_event(
            ScalingEventType.INTERRUPTION, None,
            {
                "instance_id": instance_id,
                "drained": result["drained"],
                "replacement_instance_ids": result["replacement_instance_ids"],
                "epoch": now
            }
        )
        return result

    # Status

    def get_status(self) -> Dict[str, Any]:
        state = self.store.get_state()
        lock = self.store.get_lock()
        return {
            "phase": state.phase.value,
            "state": state.to_dict(),
            "lock": lock.to_dict() if lock else None,
            "dry_run": self.dry_run,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    def _result(self, status: str, now: int, decision: Optional[Decision] = None,
                load: Optional[LoadSnapshot] = None, **extra) -> Dict[str, Any]:
        TICK_OUTCOMES.labels(status=status).inc()
        result = {"status": status, "epoch": now, "timestamp": datetime.now(timezone.utc).isoformat()}
        if decision is not None:
            result["decision"] = {
                "type": decision.type.value,
                "reason": decision.reason,
                "delta": getattr(decision, "delta", 0)
            }
        if load is not None:
            result["metrics"] = {"avg_cpu": load.avg_cpu, "pending_work": load.pending_work}
        result.update(extra)
        return result
