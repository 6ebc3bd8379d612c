#!/usr/bin/env python3
"""
SmartScale - Main Entry Point
Autoscales a self-managed k3s cluster by launching and terminating EC2 workers
based on Prometheus metrics
"""

import os
import sys
import time
import signal
import threading
from typing import Any, Dict, Optional

import boto3
from prometheus_client import start_http_server

from smartscale.api.server import APIServer
from smartscale.config import Settings
from smartscale.core.blob_store import S3BlobStore
from smartscale.core.decision import ScalingPolicy
from smartscale.core.drainer import NodeDrainer
from smartscale.core.kubernetes_api import KubernetesGateway, build_core_api
from smartscale.core.logging_config import setup_logging, get_logger
from smartscale.core.metrics import MetricsGateway
from smartscale.core.orchestrator import Orchestrator, ERRORS
from smartscale.core.provisioner import ComputeProvisioner
from smartscale.core.reconciliation import ActionReconciler
from smartscale.core.retry import RetryPolicy
from smartscale.database import ClusterStateStore, RedisClient


class AutoscalerService:
    """Main autoscaler service that wires and coordinates all components"""

    def __init__(self, config_path: Optional[str] = None, dry_run: bool = False):
        """Initialize the autoscaler service"""
        if config_path and os.path.exists(config_path):
            self.settings = Settings.load_from_yaml_with_env_override(config_path)
        else:
            self.settings = Settings()

        if dry_run:
            self.settings.autoscaler.dry_run = True

        setup_logging(
            level=self.settings.logging.level,
            log_file=self.settings.logging.file,
            enable_colors=self.settings.logging.enable_colors
        )
        self.logger = get_logger(__name__)
        self.running = True
        self._stop_event = threading.Event()

        autoscaler = self.settings.autoscaler
        self.retry_policy = RetryPolicy(
            attempts=autoscaler.call_attempts,
            timeout=autoscaler.call_timeout
        )

        self.redis = self._init_redis()
        self.store = ClusterStateStore(self.redis, self.settings.aws.cluster_id)
        self.orchestrator = self._build_orchestrator()
        self.api_server = APIServer(self.orchestrator, self.settings.get_public_config())

        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        self.logger.info(f"SmartScale initialized for cluster {self.settings.aws.cluster_id}")
        if self.settings.debug:
            self.logger.info(f"Debug mode enabled. Settings: {self.settings.model_dump()}")

    def _init_redis(self) -> RedisClient:
        """Connect to the state store; the service cannot run without it"""
        redis_settings = self.settings.redis
        try:
            return RedisClient(
                host=redis_settings.host,
                port=redis_settings.port,
                db=redis_settings.db,
                password=redis_settings.password,
                key_prefix=redis_settings.key_prefix,
                timeout=redis_settings.connection_timeout
            )
        except Exception as e:
            self.logger.error(f"Failed to initialize state store: {e}")
            sys.exit(1)

    def _build_orchestrator(self) -> Orchestrator:
        aws = self.settings.aws
        autoscaler = self.settings.autoscaler

        ec2 = boto3.client("ec2", region_name=aws.region, endpoint_url=aws.ec2_endpoint)
        s3 = boto3.client("s3", region_name=aws.region, endpoint_url=aws.s3_endpoint)
        blob_store = S3BlobStore(s3, aws.config_bucket, self.retry_policy)

        kubernetes = KubernetesGateway(
            build_core_api(self.settings.kubernetes, token_reader=blob_store.read),
            self.retry_policy,
            request_timeout=self.settings.kubernetes.request_timeout
        )
        provisioner = ComputeProvisioner(
            ec2,
            cluster_id=aws.cluster_id,
            subnet_ids=aws.worker_subnet_ids,
            ami_id=aws.ami_id,
            master_address=aws.master_address,
            instance_type=aws.instance_type,
            security_group_id=aws.security_group_id or None,
            iam_instance_profile=aws.iam_instance_profile,
            retry_policy=self.retry_policy
        )
        metrics = MetricsGateway(
            self.settings.prometheus.url,
            retry_policy=self.retry_policy,
            query_timeout=self.settings.prometheus.query_timeout,
            cpu_query=self.settings.prometheus.cpu_query,
            pending_query=self.settings.prometheus.pending_query
        )
        drainer = NodeDrainer(kubernetes, grace_period=autoscaler.drain_grace_period)
        reconciler = ActionReconciler(
            self.store,
            provisioner,
            kubernetes,
            drainer,
            verification_timeout=autoscaler.action_verification_timeout
        )

        return Orchestrator(
            store=self.store,
            metrics=metrics,
            provisioner=provisioner,
            drainer=drainer,
            blob_store=blob_store,
            reconciler=reconciler,
            policy=ScalingPolicy.from_settings(autoscaler),
            join_token_key=aws.join_token_key,
            lock_ttl=autoscaler.lock_ttl,
            dry_run=autoscaler.dry_run
        )

    def _signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        self.logger.info(f"Received signal {signum}, shutting down...")
        self.running = False
        self._stop_event.set()

    def run_once(self) -> Dict[str, Any]:
        """Run a single tick and return its result"""
        result = self.orchestrator.handle_tick()
        self.logger.info(f"Tick finished with status {result['status']}")
        return result

    def run(self):
        """Main run loop"""
        self.logger.info("Starting SmartScale autoscaler service...")
        autoscaler = self.settings.autoscaler

        start_http_server(autoscaler.metrics_port)
        self.logger.info(f"Prometheus metrics server started on :{autoscaler.metrics_port}")

        api_thread = threading.Thread(
            target=self.api_server.run,
            kwargs={'host': autoscaler.api_host, 'port': autoscaler.api_port}
        )
        api_thread.daemon = True
        api_thread.start()
        self.logger.info(f"API server started on :{autoscaler.api_port}")

        interval = autoscaler.check_interval
        self.logger.info(f"Starting autoscaling loop with {interval}s interval")

        while self.running:
            started = time.monotonic()
            try:
                result = self.run_once()
                if result["status"] == "error":
                    self.logger.error(f"Autoscaling tick error: {result.get('detail')}")
            except Exception as e:
                self.logger.error(f"Unexpected error in autoscaling loop: {e}")
                ERRORS.labels(type='unexpected').inc()

            # Sleep until next tick, waking early on shutdown
            self._stop_event.wait(max(0.0, interval - (time.monotonic() - started)))

        self.logger.info("Autoscaler service stopped")

    def cleanup(self):
        """Cleanup resources"""
        try:
            self.retry_policy.shutdown()
            if self.redis:
                self.redis.close()
            self.logger.info("Cleanup completed")
        except Exception as e:
            self.logger.error(f"Error during cleanup: {e}")


def main():
    """Entry point"""
    import argparse

    parser = argparse.ArgumentParser(description='SmartScale k3s autoscaler')
    parser.add_argument(
        '--config',
        default=os.getenv('CONFIG_PATH', '/app/config/config.yaml'),
        help='Path to configuration file'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Run in dry-run mode (decide but never scale)'
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='Run a single tick and exit'
    )

    args = parser.parse_args()

    service = AutoscalerService(args.config, dry_run=args.dry_run)
    if args.dry_run:
        service.logger.info("Dry-run mode enabled")

    try:
        if args.once:
            result = service.run_once()
            sys.exit(1 if result["status"] == "error" else 0)
        service.run()
    except KeyboardInterrupt:
        service.logger.info("Received keyboard interrupt")
    except Exception as e:
        service.logger.error(f"Fatal error: {e}")
        sys.exit(1)
    finally:
        service.cleanup()


if __name__ == "__main__":
    main()
