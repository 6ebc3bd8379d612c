#!/usr/bin/env python3
"""
Record schemas for the cluster state store
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Set, Union


class ClusterPhase(str, Enum):
    """Scaling state machine phases"""
    IDLE = "idle"
    SCALING_UP = "scaling_up"
    SCALING_DOWN = "scaling_down"


class ScalingEventType(str, Enum):
    """Scaling history event types"""
    SCALE_UP_STARTED = "scale_up_started"
    SCALE_UP_COMPLETED = "scale_up_completed"
    SCALE_DOWN_STARTED = "scale_down_started"
    SCALE_DOWN_COMPLETED = "scale_down_completed"
    SCALING_FAILED = "scaling_failed"
    INTERRUPTION = "interruption"


@dataclass
class ScaleUpAction:
    """In-flight add-one-node action"""
    action_id: str
    started_epoch: int
    launched_instance_ids: List[str] = field(default_factory=list)

    kind = "scale_up"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "action_id": self.action_id,
            "started_epoch": self.started_epoch,
            "launched_instance_ids": list(self.launched_instance_ids)
        }


@dataclass
class ScaleDownAction:
    """In-flight remove-one-node action"""
    action_id: str
    started_epoch: int
    target_instance_ids: Set[str] = field(default_factory=set)
    completed_instance_ids: Set[str] = field(default_factory=set)

    kind = "scale_down"

    @property
    def pending_instance_ids(self) -> Set[str]:
        """Targets not yet confirmed as terminated"""
        return self.target_instance_ids - self.completed_instance_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "action_id": self.action_id,
            "started_epoch": self.started_epoch,
            "target_instance_ids": sorted(self.target_instance_ids),
            "completed_instance_ids": sorted(self.completed_instance_ids)
        }


ScalingAction = Union[ScaleUpAction, ScaleDownAction]


def action_from_dict(data: Optional[Dict[str, Any]]) -> Optional[ScalingAction]:
    """Decode the tagged action sub-record"""
    if not data:
        return None
    kind = data.get("type")
    if kind == ScaleUpAction.kind:
        return ScaleUpAction(
            action_id=data["action_id"],
            started_epoch=int(data.get("started_epoch", 0)),
            launched_instance_ids=list(data.get("launched_instance_ids") or [])
        )
    if kind == ScaleDownAction.kind:
        return ScaleDownAction(
            action_id=data["action_id"],
            started_epoch=int(data.get("started_epoch", 0)),
            target_instance_ids=set(data.get("target_instance_ids") or []),
            completed_instance_ids=set(data.get("completed_instance_ids") or [])
        )
    raise ValueError(f"Unknown scaling action type: {kind!r}")


@dataclass
class ClusterState:
    """The single per-cluster state record"""
    last_scale_epoch: int = 0
    worker_count: int = 0
    action: Optional[ScalingAction] = None

    @property
    def scaling_in_progress(self) -> bool:
        return self.action is not None

    @property
    def phase(self) -> ClusterPhase:
        if isinstance(self.action, ScaleUpAction):
            return ClusterPhase.SCALING_UP
        if isinstance(self.action, ScaleDownAction):
            return ClusterPhase.SCALING_DOWN
        return ClusterPhase.IDLE

    @property
    def action_id(self) -> Optional[str]:
        return self.action.action_id if self.action else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the stored JSON document"""
        return {
            "scaling_in_progress": self.scaling_in_progress,
            "last_scale_epoch": self.last_scale_epoch,
            "worker_count": self.worker_count,
            "action": self.action.to_dict() if self.action else None
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'ClusterState':
        """Create from the stored JSON document"""
        if not data:
            return cls()
        return cls(
            last_scale_epoch=int(data.get("last_scale_epoch", 0)),
            worker_count=int(data.get("worker_count", 0)),
            action=action_from_dict(data.get("action"))
        )


@dataclass
class LockRecord:
    """Advisory lock guarding state mutations"""
    held: bool
    owner: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at <= now

    def to_dict(self) -> Dict[str, Any]:
        return {"held": self.held, "owner": self.owner, "expires_at": self.expires_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LockRecord':
        return cls(
            held=bool(data.get("held", False)),
            owner=str(data.get("owner", "")),
            expires_at=float(data.get("expires_at", 0))
        )


@dataclass
class WorkerNode:
    """Worker instance as reported by the compute provisioner"""
    instance_id: str
    private_address: str
    launch_time: datetime
    zone: str = ""
    subnet_id: str = ""
    private_dns_name: Optional[str] = None

    @property
    def node_name(self) -> str:
        """Kubernetes node name (k3s registers EC2 hosts by private DNS label)"""
        if self.private_dns_name:
            return self.private_dns_name.split(".")[0]
        return f"ip-{self.private_address.replace('.', '-')}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "private_address": self.private_address,
            "launch_time": self.launch_time.isoformat() if self.launch_time else None,
            "zone": self.zone,
            "subnet_id": self.subnet_id,
            "node_name": self.node_name
        }
