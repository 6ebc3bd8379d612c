"""
Shared fixtures for the autoscaler test suite
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

import fakeredis
import pytest

from smartscale.core.decision import ScalingPolicy
from smartscale.core.drainer import DrainResult
from smartscale.database import ClusterStateStore, RedisClient, WorkerNode
from smartscale.models.metrics import LoadSnapshot

NOW = 1_700_000_000
BASE_LAUNCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_worker(index: int, zone: str = "ap-southeast-1a", age_minutes: int = 0) -> WorkerNode:
    """Worker launched age_minutes after the base time"""
    return WorkerNode(
        instance_id=f"i-{index:04d}",
        private_address=f"10.0.1.{index}",
        launch_time=BASE_LAUNCH + timedelta(minutes=age_minutes),
        zone=zone,
        subnet_id=f"subnet-{zone[-1]}"
    )


class FakeClock:
    """Settable clock for deterministic epochs"""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(redis_server):
    return RedisClient(client=fakeredis.FakeRedis(server=redis_server, decode_responses=True))


@pytest.fixture
def store(redis_client, clock):
    return ClusterStateStore(redis_client, "test-cluster", clock=clock)


@pytest.fixture
def policy():
    return ScalingPolicy()


@pytest.fixture
def workers():
    """Three workers spread over two zones, i-0001 the oldest"""
    return [
        make_worker(1, "ap-southeast-1a", age_minutes=0),
        make_worker(2, "ap-southeast-1b", age_minutes=10),
        make_worker(3, "ap-southeast-1a", age_minutes=20)
    ]


@pytest.fixture
def mock_metrics():
    metrics = Mock()
    metrics.collect.return_value = LoadSnapshot(avg_cpu=50.0, pending_work=0)
    return metrics


@pytest.fixture
def mock_provisioner(workers):
    provisioner = Mock()
    provisioner.list_workers.return_value = list(workers)
    provisioner.launch.return_value = ["i-new"]
    provisioner.launch_in.return_value = ["i-new"]
    provisioner.plan_placement.return_value = ("ap-southeast-1b", "subnet-b")
    return provisioner


@pytest.fixture
def mock_drainer():
    drainer = Mock()
    drainer.drain.side_effect = lambda node_name: DrainResult(node_name=node_name, cordoned=True)
    return drainer


@pytest.fixture
def mock_blob_store():
    blob_store = Mock()
    blob_store.read.return_value = "K10::join-token"
    return blob_store


@pytest.fixture
def mock_kubernetes():
    kubernetes = Mock()
    kubernetes.ready_node_names.return_value = set()
    return kubernetes


def make_node(name: str, ready: bool = True):
    """Mock V1Node with a Ready condition"""
    node = Mock()
    node.metadata = Mock()
    node.metadata.name = name
    node.status = Mock()
    node.status.conditions = [Mock(type="Ready", status="True" if ready else "False")]
    return node


def make_pod(name: str, namespace: str = "default", owner_kind: str = "ReplicaSet", annotations=None):
    """Mock V1Pod with a single owner reference"""
    pod = Mock()
    pod.metadata = Mock()
    pod.metadata.name = name
    pod.metadata.namespace = namespace
    pod.metadata.owner_references = [Mock(kind=owner_kind)] if owner_kind else []
    pod.metadata.annotations = annotations or {}
    return pod
