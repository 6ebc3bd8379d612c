"""
Configuration module for autoscaler settings
"""

from .settings import (
    Settings,
    settings,
    RedisSettings,
    KubernetesSettings,
    AWSSettings,
    PrometheusSettings,
    AutoscalerSettings,
    LoggingSettings
)

__all__ = [
    "Settings",
    "settings",
    "RedisSettings",
    "KubernetesSettings",
    "AWSSettings",
    "PrometheusSettings",
    "AutoscalerSettings",
    "LoggingSettings"
]
