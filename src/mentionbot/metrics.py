"""Prometheus metrics for the request pipeline.

Metrics Defined:
- mentionbot_requests_total: Counter of deliveries by outcome
- mentionbot_active_executions: Gauge of admitted heavy executions
- mentionbot_agent_duration_seconds: Histogram of agent run time
- mentionbot_agent_cost_usd_total: Counter of reported agent cost

Exposed in Prometheus text format at the `/metrics` endpoint.
"""

from typing import Optional

import structlog
from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = structlog.get_logger(__name__)

# Covers quick answers through the default ten minute agent timeout
DEFAULT_DURATION_BUCKETS = (
    5.0,
    15.0,
    30.0,
    60.0,
    120.0,
    300.0,
    600.0,
    1200.0,
)

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_REJECTED = "rejected"


class BotMetrics:
    """Container for all pipeline Prometheus metrics.

    Supports a custom registry so tests do not collide with the
    process-wide default registry.

    Attributes:
        registry: The Prometheus registry for these metrics.
        requests_total: Counter of deliveries, labelled by outcome.
        active_executions: Gauge mirroring the admission counter.
        agent_duration_seconds: Histogram of agent execution time.
        agent_cost_usd_total: Counter of reported agent cost in USD.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY

        self.requests_total = Counter(
            "mentionbot_requests_total",
            "Webhook deliveries processed by the request pipeline",
            ["outcome"],
            registry=self.registry,
        )
        self.active_executions = Gauge(
            "mentionbot_active_executions",
            "Agent executions currently admitted",
            registry=self.registry,
        )
        self.agent_duration_seconds = Histogram(
            "mentionbot_agent_duration_seconds",
            "Wall-clock duration of agent executions",
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )
        self.agent_cost_usd_total = Counter(
            "mentionbot_agent_cost_usd_total",
            "Total agent cost reported by the agent CLI",
            registry=self.registry,
        )

    def record_outcome(self, outcome: str) -> None:
        """Count one delivery outcome, never raising."""
        try:
            self.requests_total.labels(outcome=outcome).inc()
        except Exception:
            logger.warning("Failed to record outcome metric", outcome=outcome)

    def set_active(self, count: int) -> None:
        try:
            self.active_executions.set(count)
        except Exception:
            logger.warning("Failed to record active executions", count=count)

    def record_execution(
        self,
        duration_ms: Optional[float],
        cost_usd: Optional[float],
    ) -> None:
        """Record agent duration and cost when the agent reported them."""
        try:
            if duration_ms is not None:
                self.agent_duration_seconds.observe(duration_ms / 1000)
            if cost_usd is not None and cost_usd >= 0:
                self.agent_cost_usd_total.inc(cost_usd)
        except Exception:
            logger.warning("Failed to record execution metrics")

    def generate(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)
