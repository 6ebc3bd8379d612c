#!/usr/bin/env python3
"""
FastAPI server module for trigger and status endpoints
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
import uvicorn

from smartscale.core.orchestrator import Orchestrator
from smartscale.models.metrics import HealthStatus, InterruptionNotice

logger = logging.getLogger(__name__)

SPOT_INTERRUPTION_EVENT = "EC2 Spot Instance Interruption Warning"


class APIServer:
    """FastAPI server exposing the control loop triggers"""

    def __init__(self, orchestrator: Orchestrator, public_config: Optional[Dict[str, Any]] = None):
        """
        Initialize API server

        Args:
            orchestrator: Orchestrator handling ticks and interruptions
            public_config: Thresholds and limits returned by /config
        """
        self.orchestrator = orchestrator
        self.public_config = public_config or {}
        self.app = FastAPI(
            title="SmartScale Autoscaler API",
            description="Triggers and status for the k3s autoscaling control loop",
            version="1.0.0"
        )
        self._setup_routes()

    def _setup_routes(self):
        """Setup API routes"""

        @self.app.get("/")
        async def root():
            return {
                "service": "SmartScale Autoscaler",
                "version": "1.0.0",
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        @self.app.get("/health")
        async def health_check():
            """Healthy when the state store answers"""
            connected = await run_in_threadpool(self.orchestrator.store.redis.ping)
            health = HealthStatus(
                status="healthy" if connected else "unhealthy",
                state_store_connected=connected
            )
            return JSONResponse(
                content=health.model_dump(mode="json"),
                status_code=200 if connected else 503
            )

        @self.app.get("/status")
        async def get_status():
            try:
                return await run_in_threadpool(self.orchestrator.get_status)
            except Exception as e:
                logger.error(f"Error getting status: {e}")
                raise HTTPException(status_code=500, detail=str(e))

        @self.app.get("/history")
        async def get_scaling_history(limit: int = 50):
            events = await run_in_threadpool(self.orchestrator.store.get_history, limit)
            return {
                "events": events,
                "count": len(events),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }

        @self.app.get("/config")
        async def get_config():
            return self.public_config

        @self.app.post("/tick")
        async def trigger_tick():
            """Run one scheduled-tick cycle now"""
            return await run_in_threadpool(self.orchestrator.handle_tick)

        @self.app.post("/interruption")
        async def handle_interruption(notice: InterruptionNotice):
            """Spot interruption warning for a single instance"""
            if notice.detail_type and notice.detail_type != SPOT_INTERRUPTION_EVENT:
                raise HTTPException(status_code=400, detail=f"Unsupported event: {notice.detail_type}")
            instance_id = notice.resolve_instance_id()
            if not instance_id:
                raise HTTPException(status_code=400, detail="instance_id is required")
            return await run_in_threadpool(self.orchestrator.handle_interruption, instance_id)

    def run(self, host: str = "0.0.0.0", port: int = 8080):
        """Run the API server"""
        logger.info(f"Starting API server on {host}:{port}")
        uvicorn.run(self.app, host=host, port=port, log_level="info")
