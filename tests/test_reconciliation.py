#!/usr/bin/env python3
"""
Tests for in-flight action reconciliation
"""

from unittest.mock import Mock, call

import pytest

from smartscale.core.reconciliation import ActionReconciler, ReconcileOutcome
from smartscale.database import ClusterPhase

from conftest import NOW, make_worker


@pytest.fixture
def reconciler(store, mock_provisioner, mock_kubernetes, mock_drainer):
    return ActionReconciler(store, mock_provisioner, mock_kubernetes, mock_drainer, verification_timeout=600)


class TestScaleUpVerification:
    """Scale-up completes only once the new node is Ready"""

    def test_idle_state(self, reconciler, store):
        assert reconciler.reconcile(store.get_state(), NOW) == ReconcileOutcome.IDLE

    def test_completes_when_node_ready(self, reconciler, store, mock_provisioner, mock_kubernetes):
        new_worker = make_worker(9)
        mock_provisioner.list_workers.return_value = [new_worker]
        mock_kubernetes.ready_node_names.return_value = {new_worker.node_name}
        store.begin_scale_up("up-1", NOW)
        store.record_scale_up_instances("up-1", [new_worker.instance_id])

        outcome = reconciler.reconcile(store.get_state(), NOW + 90)

        assert outcome == ReconcileOutcome.COMPLETED
        state = store.get_state()
        assert state.phase == ClusterPhase.IDLE
        assert state.last_scale_epoch == NOW + 90
        assert store.get_history()[0]["event_type"] == "scale_up_completed"

    def test_waits_for_readiness(self, reconciler, store, mock_provisioner, mock_kubernetes):
        new_worker = make_worker(9)
        mock_provisioner.list_workers.return_value = [new_worker]
        mock_kubernetes.ready_node_names.return_value = set()
        store.begin_scale_up("up-1", NOW)
        store.record_scale_up_instances("up-1", [new_worker.instance_id])

        assert reconciler.reconcile(store.get_state(), NOW + 60) == ReconcileOutcome.WAITING
        assert store.get_state().action_id == "up-1"

    def test_waits_for_inventory(self, reconciler, store, mock_provisioner):
        mock_provisioner.list_workers.return_value = []
        store.begin_scale_up("up-1", NOW)
        store.record_scale_up_instances("up-1", ["i-new"])

        assert reconciler.reconcile(store.get_state(), NOW + 60) == ReconcileOutcome.WAITING

    def test_abandons_unverified_after_timeout(self, reconciler, store, mock_provisioner):
        """A launch that never produced a Ready node is not marked complete"""
        mock_provisioner.list_workers.return_value = []
        store.begin_scale_up("up-1", NOW)
        store.record_scale_up_instances("up-1", ["i-new"])

        outcome = reconciler.reconcile(store.get_state(), NOW + 600)

        assert outcome == ReconcileOutcome.ABANDONED
        state = store.get_state()
        assert state.phase == ClusterPhase.IDLE
        assert state.last_scale_epoch == 0
        assert store.get_history()[0]["event_type"] == "scaling_failed"

    def test_abandons_action_without_instances(self, reconciler, store):
        """A crash between begin and launch leaves no instance ids"""
        store.begin_scale_up("up-1", NOW)

        assert reconciler.reconcile(store.get_state(), NOW + 30) == ReconcileOutcome.WAITING
        assert reconciler.reconcile(store.get_state(), NOW + 601) == ReconcileOutcome.ABANDONED

    def test_inventory_outage_keeps_waiting(self, reconciler, store, mock_provisioner):
        mock_provisioner.list_workers.side_effect = RuntimeError("ec2 down")
        store.begin_scale_up("up-1", NOW)
        store.record_scale_up_instances("up-1", ["i-new"])

        assert reconciler.reconcile(store.get_state(), NOW + 60) == ReconcileOutcome.WAITING


class TestScaleDownRecovery:
    """Scale-down left by a crashed invocation is resumed"""

    def test_terminates_remaining_target(self, reconciler, store, mock_provisioner, workers):
        store.begin_scale_down("down-1", NOW, ["i-0001"])

        outcome = reconciler.reconcile(store.get_state(), NOW + 60)

        assert outcome == ReconcileOutcome.COMPLETED
        mock_provisioner.terminate.assert_called_once_with("i-0001")
        state = store.get_state()
        assert state.phase == ClusterPhase.IDLE
        assert state.last_scale_epoch == NOW + 60

    def test_target_already_gone(self, reconciler, store, mock_provisioner):
        mock_provisioner.list_workers.return_value = []
        store.begin_scale_down("down-1", NOW, ["i-0001"])

        assert reconciler.reconcile(store.get_state(), NOW + 60) == ReconcileOutcome.COMPLETED
        mock_provisioner.terminate.assert_not_called()

    def test_terminate_failure_waits(self, reconciler, store, mock_provisioner):
        mock_provisioner.terminate.side_effect = RuntimeError("throttled")
        store.begin_scale_down("down-1", NOW, ["i-0001"])

        assert reconciler.reconcile(store.get_state(), NOW + 60) == ReconcileOutcome.WAITING
        assert store.get_state().action.pending_instance_ids == {"i-0001"}

    def test_abandons_after_timeout(self, reconciler, store, mock_provisioner):
        mock_provisioner.list_workers.side_effect = RuntimeError("ec2 down")
        store.begin_scale_down("down-1", NOW, ["i-0001"])

        assert reconciler.reconcile(store.get_state(), NOW + 700) == ReconcileOutcome.ABANDONED
        assert store.get_state().phase == ClusterPhase.IDLE

    def test_drains_before_terminating(self, store, mock_provisioner, mock_kubernetes, mock_drainer, workers):
        calls = Mock()
        calls.attach_mock(mock_drainer.drain, "drain")
        calls.attach_mock(mock_provisioner.terminate, "terminate")
        reconciler = ActionReconciler(store, mock_provisioner, mock_kubernetes, mock_drainer)
        store.begin_scale_down("down-1", NOW, ["i-0001"])

        assert reconciler.reconcile(store.get_state(), NOW + 60) == ReconcileOutcome.COMPLETED
        assert calls.mock_calls == [call.drain("ip-10-0-1-1"), call.terminate("i-0001")]

    def test_gone_target_not_drained(self, reconciler, store, mock_provisioner, mock_drainer):
        mock_provisioner.list_workers.return_value = []
        store.begin_scale_down("down-1", NOW, ["i-0001"])

        reconciler.reconcile(store.get_state(), NOW + 60)

        mock_drainer.drain.assert_not_called()

    def test_drain_failure_still_terminates(self, reconciler, store, mock_provisioner, mock_drainer):
        mock_drainer.drain.side_effect = RuntimeError("api server unreachable")
        store.begin_scale_down("down-1", NOW, ["i-0001"])

        assert reconciler.reconcile(store.get_state(), NOW + 60) == ReconcileOutcome.COMPLETED
        mock_provisioner.terminate.assert_called_once_with("i-0001")
