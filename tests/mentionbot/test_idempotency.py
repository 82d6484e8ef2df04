"""Tests for the delivery IdempotencyGuard.

Covers the reserve-before-check ordering, durable marker detection,
failure handling of the durable check, and the retention sweep.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.mentionbot.core.idempotency import IdempotencyGuard
from src.mentionbot.core.tracking_comment import delivery_marker
from src.mentionbot.github.client import GitHubAPIError


def run_async(coro):
    return asyncio.run(coro)


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestReservation:
    def test_first_reserve_wins(self):
        guard = IdempotencyGuard()

        assert guard.try_reserve("d-1") is True
        assert guard.try_reserve("d-1") is False
        assert "d-1" in guard
        assert len(guard) == 1

    def test_release_allows_reservation_again(self):
        guard = IdempotencyGuard()
        guard.try_reserve("d-1")

        guard.release("d-1")

        assert "d-1" not in guard
        assert guard.try_reserve("d-1") is True

    def test_release_unknown_id_is_noop(self):
        guard = IdempotencyGuard()
        guard.release("never-seen")
        assert len(guard) == 0


class TestShouldSkip:
    def test_new_delivery_is_processed_and_reserved(self, make_context, github):
        guard = IdempotencyGuard()
        ctx = make_context()

        assert run_async(guard.should_skip(ctx)) is False
        assert "d-1" in guard
        github.list_issue_comments.assert_awaited_once_with(
            "acme", "widgets", 42, since="2024-05-01T12:00:00Z", per_page=100
        )

    def test_second_call_uses_memory_without_remote_call(self, make_context, github):
        guard = IdempotencyGuard()
        ctx = make_context()

        run_async(guard.should_skip(ctx))
        assert run_async(guard.should_skip(ctx)) is True

        assert github.list_issue_comments.await_count == 1
        ctx.log.info.assert_any_call("Skipping duplicate delivery (in-memory)")

    def test_reservation_happens_before_durable_check(self, make_context):
        observed = []

        async def durable_check(ctx):
            observed.append(ctx.delivery_id in guard)
            return False

        guard = IdempotencyGuard(durable_check=durable_check)

        run_async(guard.should_skip(make_context()))

        assert observed == [True]

    def test_concurrent_checks_for_same_id_check_durably_once(self, make_context):
        durable_check = AsyncMock(return_value=False)

        async def slow_check(ctx):
            await asyncio.sleep(0.01)
            return False

        durable_check.side_effect = slow_check
        guard = IdempotencyGuard(durable_check=durable_check)

        async def both():
            return await asyncio.gather(
                guard.should_skip(make_context()),
                guard.should_skip(make_context()),
            )

        results = run_async(both())

        assert sorted(results) == [False, True]
        assert durable_check.await_count == 1

    def test_durable_marker_found_skips_and_keeps_reservation(self, make_context, github):
        github.list_issue_comments.return_value = [
            {"body": None},
            {"body": f"{delivery_marker('d-1')}\nworking"},
        ]
        guard = IdempotencyGuard()

        assert run_async(guard.should_skip(make_context())) is True
        assert "d-1" in guard

    def test_marker_of_other_delivery_does_not_match(self, make_context, github):
        github.list_issue_comments.return_value = [
            {"body": f"{delivery_marker('d-10')}\nworking"},
        ]
        guard = IdempotencyGuard()

        assert run_async(guard.should_skip(make_context())) is False

    def test_durable_check_failure_releases_and_raises(self, make_context, github):
        github.list_issue_comments.side_effect = GitHubAPIError("down", status_code=503)
        guard = IdempotencyGuard()

        with pytest.raises(GitHubAPIError):
            run_async(guard.should_skip(make_context()))

        assert "d-1" not in guard


class TestSweep:
    def test_sweep_removes_only_expired_reservations(self):
        clock = FakeClock()
        guard = IdempotencyGuard(ttl_seconds=60, clock=clock)
        guard.try_reserve("old")
        clock.now += 50
        guard.try_reserve("new")
        clock.now += 20

        removed = guard.sweep()

        assert removed == 1
        assert "old" not in guard
        assert "new" in guard

    def test_sweep_with_explicit_time(self):
        clock = FakeClock()
        guard = IdempotencyGuard(ttl_seconds=60, clock=clock)
        guard.try_reserve("a")

        assert guard.sweep(now=clock.now + 30) == 0
        assert guard.sweep(now=clock.now + 61) == 1
        assert len(guard) == 0

    def test_periodic_sweep_runs_until_cancelled(self):
        clock = FakeClock()
        guard = IdempotencyGuard(ttl_seconds=1, clock=clock)
        guard.try_reserve("a")
        clock.now += 5

        async def run_briefly():
            task = asyncio.create_task(guard.run_periodic_sweep(interval_seconds=0.001))
            await asyncio.sleep(0.05)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        run_async(run_briefly())

        assert len(guard) == 0
