"""Tests for pipeline metrics and logging helpers."""

import structlog
from prometheus_client import CollectorRegistry

from src.mentionbot.log_config import create_delivery_logger, redact_secret
from src.mentionbot.metrics import OUTCOME_COMPLETED, OUTCOME_REJECTED, BotMetrics


def _metrics() -> BotMetrics:
    return BotMetrics(registry=CollectorRegistry())


def _value(metrics: BotMetrics, name: str, labels=None) -> float:
    return metrics.registry.get_sample_value(name, labels or {})


class TestBotMetrics:
    def test_outcomes_counted_per_label(self):
        metrics = _metrics()

        metrics.record_outcome(OUTCOME_COMPLETED)
        metrics.record_outcome(OUTCOME_COMPLETED)
        metrics.record_outcome(OUTCOME_REJECTED)

        assert _value(metrics, "mentionbot_requests_total", {"outcome": "completed"}) == 2
        assert _value(metrics, "mentionbot_requests_total", {"outcome": "rejected"}) == 1

    def test_active_gauge(self):
        metrics = _metrics()

        metrics.set_active(2)

        assert _value(metrics, "mentionbot_active_executions") == 2

    def test_execution_duration_and_cost(self):
        metrics = _metrics()

        metrics.record_execution(duration_ms=4500, cost_usd=0.25)
        metrics.record_execution(duration_ms=None, cost_usd=None)

        assert _value(metrics, "mentionbot_agent_duration_seconds_count") == 1
        assert _value(metrics, "mentionbot_agent_duration_seconds_sum") == 4.5
        assert _value(metrics, "mentionbot_agent_cost_usd_total") == 0.25

    def test_negative_cost_ignored(self):
        metrics = _metrics()

        metrics.record_execution(duration_ms=None, cost_usd=-1.0)

        assert _value(metrics, "mentionbot_agent_cost_usd_total") == 0

    def test_separate_registries_do_not_collide(self):
        first, second = _metrics(), _metrics()

        first.record_outcome(OUTCOME_COMPLETED)

        assert _value(second, "mentionbot_requests_total", {"outcome": "completed"}) is None
        assert b"mentionbot_requests_total" in first.generate()


class TestLogging:
    def test_redact_secret(self):
        assert redact_secret("supersecret") == "supe*******"
        assert redact_secret("abc") == "***"

    def test_delivery_logger_binds_correlation_fields(self):
        log = create_delivery_logger("d-1", "acme", "widgets", 42)

        assert structlog.get_context(log) == {
            "delivery_id": "d-1",
            "owner": "acme",
            "repo": "widgets",
            "entity_number": 42,
        }
