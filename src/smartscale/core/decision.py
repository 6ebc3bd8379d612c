#!/usr/bin/env python3
"""
Decision engine: maps current load and cluster state to a single action
"""

from dataclasses import dataclass
from enum import Enum
from typing import Union


class DecisionType(str, Enum):
    NOOP = "noop"
    SCALE_UP = "scale_up"
    SCALE_DOWN = "scale_down"


@dataclass(frozen=True)
class NoOp:
    reason: str
    type = DecisionType.NOOP


@dataclass(frozen=True)
class ScaleUp:
    delta: int
    reason: str
    type = DecisionType.SCALE_UP


@dataclass(frozen=True)
class ScaleDown:
    delta: int
    reason: str
    type = DecisionType.SCALE_DOWN


Decision = Union[NoOp, ScaleUp, ScaleDown]


@dataclass(frozen=True)
class ScalingPolicy:
    """Thresholds and limits the decision rules are evaluated against"""
    min_nodes: int = 2
    max_nodes: int = 10
    scale_up_cpu_threshold: float = 70.0
    scale_down_cpu_threshold: float = 30.0
    pending_work_threshold: int = 1
    scale_up_cooldown: int = 300
    scale_down_cooldown: int = 600

    @classmethod
    def from_settings(cls, autoscaler_settings) -> "ScalingPolicy":
        return cls(
            min_nodes=autoscaler_settings.min_nodes,
            max_nodes=autoscaler_settings.max_nodes,
            scale_up_cpu_threshold=autoscaler_settings.cpu_threshold_up,
            scale_down_cpu_threshold=autoscaler_settings.cpu_threshold_down,
            pending_work_threshold=autoscaler_settings.pending_work_threshold,
            scale_up_cooldown=autoscaler_settings.scale_up_cooldown,
            scale_down_cooldown=autoscaler_settings.scale_down_cooldown
        )


def decide(
    cpu: float,
    pending_work: float,
    worker_count: int,
    last_scale_epoch: int,
    scaling_in_progress: bool,
    now: int,
    policy: ScalingPolicy = ScalingPolicy()
) -> Decision:
    """
    Choose at most one single-node action

    Rules are evaluated in order, so scale-up wins when both directions
    qualify. Cooldowns run from the last completed action.
    """
    if scaling_in_progress:
        return NoOp("in progress")

    elapsed = now - last_scale_epoch

    if worker_count < policy.max_nodes and elapsed >= policy.scale_up_cooldown:
        pending_triggered = pending_work >= policy.pending_work_threshold and pending_work > 0
        if pending_triggered:
            return ScaleUp(delta=1, reason="Pending Pods")
        if cpu > policy.scale_up_cpu_threshold:
            return ScaleUp(delta=1, reason="High CPU")

    if (worker_count > policy.min_nodes
            and elapsed >= policy.scale_down_cooldown
            and cpu < policy.scale_down_cpu_threshold
            and pending_work == 0):
        return ScaleDown(delta=1, reason="Low CPU & Idle")

    return NoOp("stable")
