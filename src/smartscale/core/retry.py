#!/usr/bin/env python3
"""
Bounded retry-with-timeout policy shared by every external call
"""

import concurrent.futures
import logging
import time
from typing import Callable, Any, Optional

from smartscale.exceptions import CallTimeoutError

logger = logging.getLogger(__name__)


class RetryPolicy:
    """
    Runs external calls with a per-attempt timeout and a single bounded retry

    Gateways receive an instance at construction time so the policy can be
    swapped (or disabled in tests) without touching decision logic.
    """

    def __init__(
        self,
        attempts: int = 2,
        timeout: Optional[float] = 10.0,
        delay: float = 0.5,
        max_workers: int = 8,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize retry policy

        Args:
            attempts: Total attempts for idempotent calls (1 disables retry)
            timeout: Seconds allowed per attempt, None for no limit
            delay: Seconds to wait between attempts
            max_workers: Size of the thread pool running timed calls
            sleep: Sleep function, injectable for tests
        """
        self.attempts = max(1, attempts)
        self.timeout = timeout
        self.delay = delay
        self._sleep = sleep
        self._executor = None
        if timeout is not None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix="smartscale-call"
            )

    def call(self, func: Callable, *args, operation: str = "", idempotent: bool = True, **kwargs) -> Any:
        """
        Execute func under the policy

        Args:
            func: Callable to execute
            operation: Name used in log messages
            idempotent: False runs exactly one attempt
            *args, **kwargs: Passed to func

        Returns:
            Result of func

        Raises:
            CallTimeoutError: If the last attempt timed out
            Exception: Whatever the last attempt raised
        """
        name = operation or getattr(func, "__name__", "call")
        attempts = self.attempts if idempotent else 1

        for attempt in range(1, attempts + 1):
            try:
                return self._run_once(func, name, *args, **kwargs)
            except Exception as e:
                if attempt >= attempts:
                    raise
                logger.warning(f"{name} failed (attempt {attempt}/{attempts}): {e}. Retrying in {self.delay}s")
                if self.delay:
                    self._sleep(self.delay)

    def _run_once(self, func: Callable, name: str, /, *args, **kwargs) -> Any:
        if self._executor is None:
            return func(*args, **kwargs)

        future = self._executor.submit(func, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout)
        except concurrent.futures.TimeoutError:
            future.cancel()
            raise CallTimeoutError(f"{name} timed out after {self.timeout}s")

    def shutdown(self):
        """Release the worker threads"""
        if self._executor is not None:
            self._executor.shutdown(wait=False)


# Policy without timeouts or retries, used where the caller owns error handling
NO_RETRY = RetryPolicy(attempts=1, timeout=None, delay=0)
