"""Tests for the ConcurrencyGate admission counter."""

import pytest
from prometheus_client import CollectorRegistry
from structlog.testing import capture_logs

from src.mentionbot.core.concurrency import ConcurrencyGate
from src.mentionbot.metrics import BotMetrics


def test_admits_up_to_limit_then_rejects():
    gate = ConcurrencyGate(limit=2)

    assert gate.try_admit() is True
    assert gate.try_admit() is True
    assert gate.try_admit() is False
    assert gate.active == 2


def test_release_frees_a_slot():
    gate = ConcurrencyGate(limit=1)
    gate.try_admit()

    gate.release()

    assert gate.active == 0
    assert gate.try_admit() is True


def test_release_without_admission_never_goes_negative():
    gate = ConcurrencyGate(limit=1)

    with capture_logs() as logs:
        gate.release()

    assert gate.active == 0
    assert logs[0]["log_level"] == "error"


@pytest.mark.parametrize("limit", [0, -1])
def test_limit_must_be_positive(limit):
    with pytest.raises(ValueError):
        ConcurrencyGate(limit=limit)


def test_active_count_is_reported_to_metrics():
    metrics = BotMetrics(registry=CollectorRegistry())
    gate = ConcurrencyGate(limit=3, metrics=metrics)

    gate.try_admit()
    gate.try_admit()
    assert metrics.registry.get_sample_value("mentionbot_active_executions") == 2

    gate.release()
    assert metrics.registry.get_sample_value("mentionbot_active_executions") == 1


def test_rejection_does_not_touch_metrics():
    metrics = BotMetrics(registry=CollectorRegistry())
    gate = ConcurrencyGate(limit=1, metrics=metrics)
    gate.try_admit()

    assert gate.try_admit() is False
    assert metrics.registry.get_sample_value("mentionbot_active_executions") == 1
