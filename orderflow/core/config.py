"""
PipelineConfig - Runtime settings for consumers, leases and retries.

Example:
    >>> from orderflow.core.config import PipelineConfig
    >>>
    >>> config = PipelineConfig(order_workers=4, max_attempts=8)
    >>> policy = config.retry_policy()
    >>>
    >>> # Or from ORDERFLOW_* environment variables
    >>> config = PipelineConfig.from_env()
"""

import os
from dataclasses import dataclass

from orderflow.core.classifier import RetryPolicy


@dataclass
class PipelineConfig:
    """
    Configuration for the consumer pool.

    Attributes:
        order_workers: Concurrent consumers on the order queue
        payment_workers: Concurrent consumers on the payment queue
        poll_interval_seconds: Max wait for a delivery before re-checking for shutdown
        in_flight_delay_seconds: Requeue delay when another consumer holds the lease
        lease_timeout_seconds: Age after which a lease is considered abandoned
        sweep_interval_seconds: Seconds between abandoned-lease sweeps
        drain_timeout_seconds: How long a drain waits for in-flight work
        max_attempts: Delivery attempts before a retryable error becomes terminal
        backoff_base_seconds: Requeue delay after the first failed attempt
        backoff_multiplier: Backoff growth factor
        backoff_max_seconds: Upper bound for a single backoff delay
    """

    order_workers: int = 2
    payment_workers: int = 2
    poll_interval_seconds: float = 1.0
    in_flight_delay_seconds: float = 0.5
    lease_timeout_seconds: float = 300.0  # 5 minutes
    sweep_interval_seconds: float = 30.0
    drain_timeout_seconds: float = 30.0
    max_attempts: int = 5
    backoff_base_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    backoff_max_seconds: float = 60.0

    def __post_init__(self) -> None:
        if self.order_workers < 1 or self.payment_workers < 1:
            msg = "order_workers and payment_workers must be at least 1"
            raise ValueError(msg)
        if self.max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        if self.lease_timeout_seconds <= 0:
            msg = "lease_timeout_seconds must be positive"
            raise ValueError(msg)
        if self.backoff_multiplier < 1:
            msg = "backoff_multiplier must be >= 1"
            raise ValueError(msg)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_seconds=self.backoff_base_seconds,
            multiplier=self.backoff_multiplier,
            max_delay_seconds=self.backoff_max_seconds,
        )

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create config from environment variables."""
        return cls(
            order_workers=int(os.getenv("ORDERFLOW_ORDER_WORKERS", 2)),
            payment_workers=int(os.getenv("ORDERFLOW_PAYMENT_WORKERS", 2)),
            poll_interval_seconds=float(os.getenv("ORDERFLOW_POLL_INTERVAL", 1.0)),
            in_flight_delay_seconds=float(os.getenv("ORDERFLOW_IN_FLIGHT_DELAY", 0.5)),
            lease_timeout_seconds=float(os.getenv("ORDERFLOW_LEASE_TIMEOUT", 300.0)),
            sweep_interval_seconds=float(os.getenv("ORDERFLOW_SWEEP_INTERVAL", 30.0)),
            drain_timeout_seconds=float(os.getenv("ORDERFLOW_DRAIN_TIMEOUT", 30.0)),
            max_attempts=int(os.getenv("ORDERFLOW_MAX_ATTEMPTS", 5)),
            backoff_base_seconds=float(os.getenv("ORDERFLOW_BACKOFF_BASE", 1.0)),
            backoff_multiplier=float(os.getenv("ORDERFLOW_BACKOFF_MULTIPLIER", 2.0)),
            backoff_max_seconds=float(os.getenv("ORDERFLOW_BACKOFF_MAX", 60.0)),
        )
