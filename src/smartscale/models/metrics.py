#!/usr/bin/env python3
"""
Pydantic models for metrics and API payloads
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field
from datetime import datetime, timezone


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LoadSnapshot(BaseModel):
    """Aggregate load signals for one tick"""
    avg_cpu: float = Field(0.0, ge=0, description="Average CPU usage percentage")
    pending_work: float = Field(0.0, ge=0, description="Number of pending pods")
    timestamp: datetime = Field(default_factory=_utcnow, description="Timestamp of metrics collection")


class InterruptionNotice(BaseModel):
    """Spot interruption payload: bare id or the EC2 interruption warning event"""
    instance_id: Optional[str] = Field(None, description="Instance about to be reclaimed")
    detail_type: Optional[str] = Field(None, alias="detail-type")
    detail: Dict[str, Any] = Field(default_factory=dict)

    model_config = {"populate_by_name": True}

    def resolve_instance_id(self) -> Optional[str]:
        return self.instance_id or self.detail.get("instance-id")


class HealthStatus(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Health status: 'healthy' or 'unhealthy'")
    timestamp: datetime = Field(default_factory=_utcnow, description="Health check timestamp")
    state_store_connected: bool = Field(..., description="Whether Redis answered a ping")
    details: Optional[Dict[str, Any]] = Field(None, description="Additional health details")
