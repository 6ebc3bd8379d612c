"""
Data models for the autoscaler
"""

from .metrics import LoadSnapshot, InterruptionNotice, HealthStatus

__all__ = [
    "LoadSnapshot",
    "InterruptionNotice",
    "HealthStatus"
]
