"""
Core autoscaler modules
"""

from .decision import decide, Decision, DecisionType, NoOp, ScaleUp, ScaleDown, ScalingPolicy
from .orchestrator import Orchestrator
from .reconciliation import ActionReconciler, ReconcileOutcome

__all__ = [
    "decide",
    "Decision",
    "DecisionType",
    "NoOp",
    "ScaleUp",
    "ScaleDown",
    "ScalingPolicy",
    "Orchestrator",
    "ActionReconciler",
    "ReconcileOutcome"
]
