#!/usr/bin/env python3
"""
Metrics gateway for aggregate cluster load from Prometheus
"""

import concurrent.futures
import math
from typing import Optional

import requests

from smartscale.models.metrics import LoadSnapshot
from .logging_config import get_logger
from .retry import RetryPolicy, NO_RETRY

logger = get_logger(__name__)

DEFAULT_CPU_QUERY = '100 - (avg(rate(node_cpu_seconds_total{mode="idle"}[2m])) * 100)'
DEFAULT_PENDING_QUERY = 'sum(kube_pod_status_phase{phase="Pending"})'


class MetricsGateway:
    """Queries Prometheus for the load signals the decision engine uses"""

    def __init__(
        self,
        prometheus_url: str,
        retry_policy: RetryPolicy = NO_RETRY,
        query_timeout: int = 5,
        cpu_query: str = DEFAULT_CPU_QUERY,
        pending_query: str = DEFAULT_PENDING_QUERY,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize metrics gateway

        Args:
            prometheus_url: Base URL of the Prometheus server
            retry_policy: Policy wrapping each query
            query_timeout: HTTP timeout per request in seconds
            cpu_query: PromQL returning average CPU percent
            pending_query: PromQL returning the pending pod count
            session: Optional requests session
        """
        self.prometheus_url = prometheus_url.rstrip("/")
        self.retry_policy = retry_policy
        self.query_timeout = query_timeout
        self.cpu_query = cpu_query
        self.pending_query = pending_query
        self.session = session or requests.Session()

    def query(self, expression: str) -> float:
        """
        Evaluate an instant query to a scalar

        Any error or empty result yields 0.0 so a metrics outage never
        triggers a scale-up.
        """
        try:
            value = self.retry_policy.call(self._query_prometheus, expression, operation="prometheus_query")
        except Exception as e:
            logger.error(f"Error querying Prometheus ({expression}): {e}")
            return 0.0

        if value is None:
            logger.warning(f"No metric data returned for: {expression}")
            return 0.0
        return value

    def collect(self) -> LoadSnapshot:
        """Fetch CPU and pending work concurrently"""
        with concurrent.futures.ThreadPoolExecutor(max_workers=2, thread_name_prefix="metrics") as executor:
            cpu_future = executor.submit(self.query, self.cpu_query)
            pending_future = executor.submit(self.query, self.pending_query)
            cpu = cpu_future.result()
            pending = pending_future.result()

        logger.info(f"Cluster load: CPU {cpu:.1f}%, pending pods {pending:.0f}")
        return LoadSnapshot(avg_cpu=max(0.0, cpu), pending_work=max(0.0, pending))

    def _query_prometheus(self, expression: str) -> Optional[float]:
        """Raw query; raises on transport errors, None on empty result"""
        response = self.session.get(
            f"{self.prometheus_url}/api/v1/query",
            params={'query': expression},
            timeout=self.query_timeout
        )
        response.raise_for_status()
        data = response.json()

        if data.get('status') != 'success':
            logger.error(f"Prometheus query failed: {data.get('error', 'Unknown error')}")
            return None

        result = data.get('data', {}).get('result') or []
        if not result:
            return None

        value = float(result[0]['value'][1])
        if math.isnan(value) or math.isinf(value):
            return None
        return value

    def ping(self) -> bool:
        """Check that Prometheus answers"""
        try:
            response = self.session.get(f"{self.prometheus_url}/-/healthy", timeout=self.query_timeout)
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.warning(f"Prometheus health check failed: {e}")
            return False
