"""
Database package for the autoscaler

Provides the Redis-backed cluster state store and its record schemas.
"""

from .schemas import (
    ClusterState,
    ClusterPhase,
    LockRecord,
    ScaleUpAction,
    ScaleDownAction,
    ScalingAction,
    ScalingEventType,
    WorkerNode
)

from .redis_client import RedisClient
from .state_store import ClusterStateStore

__all__ = [
    # Schemas
    "ClusterState",
    "ClusterPhase",
    "LockRecord",
    "ScaleUpAction",
    "ScaleDownAction",
    "ScalingAction",
    "ScalingEventType",
    "WorkerNode",

    # Clients
    "RedisClient",
    "ClusterStateStore"
]
