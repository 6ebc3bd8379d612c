#!/usr/bin/env python3
"""
Tests for node draining and the Kubernetes gateway
"""

from unittest.mock import Mock

import pytest
from kubernetes.client.rest import ApiException

from smartscale.core.drainer import NodeDrainer, is_daemon_pod
from smartscale.core.kubernetes_api import KubernetesGateway

from conftest import make_node, make_pod


@pytest.fixture
def core_api():
    api = Mock()
    api.list_pod_for_all_namespaces.return_value = Mock(items=[])
    return api


@pytest.fixture
def gateway(core_api):
    return KubernetesGateway(core_api)


@pytest.fixture
def sleep():
    return Mock()


@pytest.fixture
def drainer(gateway, sleep):
    return NodeDrainer(gateway, grace_period=10, sleep=sleep)


class TestDaemonPods:
    def test_daemonset_pod(self):
        assert is_daemon_pod(make_pod("svclb", "kube-system", owner_kind="DaemonSet"))

    def test_mirror_pod(self):
        pod = make_pod("kube-proxy", "kube-system", owner_kind=None,
                       annotations={"kubernetes.io/config.mirror": "abc"})
        assert is_daemon_pod(pod)

    def test_regular_pod(self):
        assert not is_daemon_pod(make_pod("web-1"))


class TestNodeDrainer:
    """Test best-effort drain"""

    def test_cordons_and_evicts(self, drainer, core_api, sleep):
        core_api.list_pod_for_all_namespaces.return_value = Mock(items=[
            make_pod("web-1"),
            make_pod("svclb-1", "kube-system", owner_kind="DaemonSet"),
            make_pod("api-1", "prod")
        ])

        result = drainer.drain("ip-10-0-1-5")

        core_api.patch_node.assert_called_once()
        assert core_api.patch_node.call_args.args == ("ip-10-0-1-5", {"spec": {"unschedulable": True}})
        assert core_api.list_pod_for_all_namespaces.call_args.kwargs["field_selector"] == "spec.nodeName=ip-10-0-1-5"
        assert result.cordoned is True
        assert result.evicted == ["default/web-1", "prod/api-1"]
        assert result.skipped == ["kube-system/svclb-1"]
        assert core_api.create_namespaced_pod_eviction.call_count == 2
        sleep.assert_called_once_with(10)

    def test_daemon_pods_never_evicted(self, drainer, core_api):
        core_api.list_pod_for_all_namespaces.return_value = Mock(items=[
            make_pod("svclb-1", "kube-system", owner_kind="DaemonSet")
        ])

        drainer.drain("ip-10-0-1-5")

        core_api.create_namespaced_pod_eviction.assert_not_called()

    def test_eviction_failure_does_not_stop_drain(self, drainer, core_api):
        core_api.list_pod_for_all_namespaces.return_value = Mock(items=[make_pod("web-1"), make_pod("web-2")])
        core_api.create_namespaced_pod_eviction.side_effect = [ApiException(status=429), None]

        result = drainer.drain("ip-10-0-1-5")

        assert result.failed == ["default/web-1"]
        assert result.evicted == ["default/web-2"]

    def test_never_raises(self, drainer, core_api, sleep):
        """A node that is already gone still drains cleanly"""
        core_api.patch_node.side_effect = ApiException(status=404)
        core_api.list_pod_for_all_namespaces.side_effect = ApiException(status=500)

        result = drainer.drain("ip-10-0-1-5")

        assert result.cordoned is False
        assert result.evicted == []
        sleep.assert_called_once_with(10)

    def test_no_grace_period(self, gateway, sleep):
        NodeDrainer(gateway, grace_period=0, sleep=sleep).drain("ip-10-0-1-5")
        sleep.assert_not_called()


class TestKubernetesGateway:
    def test_ready_node_names(self, gateway, core_api):
        core_api.list_node.return_value = Mock(items=[
            make_node("ip-10-0-1-5", ready=True),
            make_node("ip-10-0-1-6", ready=False)
        ])

        assert gateway.ready_node_names() == {"ip-10-0-1-5"}
