"""Request pipeline connecting all stages of a mention request.

Receives parsed contexts from the webhook handler and drives them through:
idempotency check → admission → tracking comment → data fetch →
enrichment → prompt → checkout → agent run → finalization.

process_request never raises, except to propagate its own cancellation.
Internal error detail stays in the server
logs; the user only ever sees the generic error sentence on the tracking
comment. Each delivery ends in exactly one outcome metric.

Source:
- src/mentionbot/core/idempotency.py (IdempotencyGuard)
- src/mentionbot/core/concurrency.py (ConcurrencyGate)
- src/mentionbot/core/fetcher.py (DataFetcher)
- src/mentionbot/core/prompt_builder.py (PromptBuilder)
- src/mentionbot/core/checkout.py (RepositoryCheckout)
- src/mentionbot/mcp/registry.py (McpRegistry)
- src/mentionbot/core/executor.py (AgentExecutor)
"""

import asyncio
from typing import Optional

from src.mentionbot.core.checkout import RepositoryCheckout
from src.mentionbot.core.concurrency import ConcurrencyGate
from src.mentionbot.core.context import enrich_context
from src.mentionbot.core.executor import AgentExecutor
from src.mentionbot.core.fetcher import DataFetcher
from src.mentionbot.core.idempotency import IdempotencyGuard
from src.mentionbot.core.prompt_builder import PromptBuilder
from src.mentionbot.core.tracking_comment import (
    DEFAULT_TRIGGER_PHRASE,
    GENERIC_ERROR_MESSAGE,
    build_capacity_notice,
    create_tracking_comment,
    finalize_tracking_comment,
)
from src.mentionbot.mcp.registry import McpRegistry
from src.mentionbot.metrics import (
    OUTCOME_COMPLETED,
    OUTCOME_DUPLICATE,
    OUTCOME_FAILED,
    OUTCOME_REJECTED,
    BotMetrics,
)
from src.mentionbot.models import BotContext, CheckoutResult, ExecutionResult
from src.mentionbot.utils.retry import RetryPolicy, retry_with_backoff

# Bound on the error notice posted for a cancelled delivery
CANCEL_FINALIZE_TIMEOUT_SECONDS = 10.0


class RequestPipeline:
    """Processes one mention request end to end.

    Accepts all collaborators via constructor injection. The guard and the
    gate are the only state shared between concurrently processed
    deliveries.

    Attributes:
        guard: Delivery idempotency guard.
        gate: Admission gate bounding concurrent agent runs.
        fetcher: GraphQL data fetcher.
        prompt_builder: Prompt and allowed-tool resolution.
        checkout: Repository checkout.
        registry: Tool server resolution.
        executor: Agent CLI runner.
        comment_retry: Retry policy for tracking comment calls.
        fetch_retry: Retry policy for the data fetch.
        agent_timeout_seconds: Wall-clock bound for one agent run.
        trigger_phrase: Bot name shown in comments.
        metrics: Prometheus metrics (optional).
    """

    def __init__(
        self,
        guard: IdempotencyGuard,
        gate: ConcurrencyGate,
        fetcher: DataFetcher,
        prompt_builder: PromptBuilder,
        checkout: RepositoryCheckout,
        registry: McpRegistry,
        executor: AgentExecutor,
        comment_retry: Optional[RetryPolicy] = None,
        fetch_retry: Optional[RetryPolicy] = None,
        agent_timeout_seconds: float = 600.0,
        trigger_phrase: str = DEFAULT_TRIGGER_PHRASE,
        metrics: Optional[BotMetrics] = None,
    ):
        self.guard = guard
        self.gate = gate
        self.fetcher = fetcher
        self.prompt_builder = prompt_builder
        self.checkout = checkout
        self.registry = registry
        self.executor = executor
        self.comment_retry = comment_retry or RetryPolicy(initial_delay=1.0)
        self.fetch_retry = fetch_retry or RetryPolicy(initial_delay=2.0)
        self.agent_timeout_seconds = agent_timeout_seconds
        self.trigger_phrase = trigger_phrase
        self.metrics = metrics

    async def process_request(self, ctx: BotContext) -> None:
        """Drive a delivery through the full pipeline.

        Duplicate deliveries are skipped silently and deliveries arriving
        while the gate is full get a capacity notice. Admitted deliveries
        always release their slot, and the delivery's API client is closed
        on every path.

        Args:
            ctx: Parsed request context.
        """
        log = ctx.log
        try:
            try:
                skip = await self.guard.should_skip(ctx)
            except Exception as e:
                log.exception("Idempotency check failed", error_type=type(e).__name__)
                self._record(OUTCOME_FAILED)
                return

            if skip:
                self._record(OUTCOME_DUPLICATE)
                return

            if not self.gate.try_admit():
                # The reservation is kept: this delivery id is settled
                await self._post_capacity_notice(ctx)
                self._record(OUTCOME_REJECTED)
                return

            try:
                outcome = await self._run_admitted(ctx)
            except asyncio.CancelledError:
                self._record(OUTCOME_FAILED)
                raise
            finally:
                self.gate.release()
            self._record(outcome)
        finally:
            await self._close_client(ctx)

    async def _run_admitted(self, ctx: BotContext) -> str:
        """Run every step after admission.

        Returns:
            The outcome to record for this delivery.
        """
        log = ctx.log
        tracking_comment_id: Optional[int] = None

        try:
            tracking_comment_id = await retry_with_backoff(
                lambda: create_tracking_comment(ctx, self.trigger_phrase),
                self.comment_retry,
                log,
            )

            token = await ctx.github.installation_token()

            data = await retry_with_backoff(
                lambda: self.fetcher.fetch(ctx),
                self.fetch_retry,
                log,
            )

            # Every later step reads the enriched value only
            enriched = enrich_context(ctx, data)
            prompt = self.prompt_builder.build(enriched, data, tracking_comment_id)

            workspace = await self.checkout.checkout(enriched, token)
            try:
                mcp_servers = self.registry.resolve(enriched, tracking_comment_id, token)
                allowed_tools = self.prompt_builder.resolve_allowed_tools(enriched)

                result = await asyncio.wait_for(
                    self.executor.run(
                        enriched, prompt, mcp_servers, workspace.work_dir, allowed_tools
                    ),
                    timeout=self.agent_timeout_seconds,
                )

                comment_id = tracking_comment_id
                await retry_with_backoff(
                    lambda: finalize_tracking_comment(
                        enriched,
                        comment_id,
                        result.success,
                        trigger_phrase=self.trigger_phrase,
                        duration_ms=result.duration_ms,
                        cost_usd=result.cost_usd,
                    ),
                    self.comment_retry,
                    log,
                )
                self._log_completion(enriched, result)
            finally:
                await self._cleanup(workspace, log)
        except Exception as e:
            log.exception(
                "Request processing failed",
                error_type=type(e).__name__,
                tracking_comment_id=tracking_comment_id,
            )
            if tracking_comment_id is not None:
                await self._finalize_error(ctx, tracking_comment_id)
            return OUTCOME_FAILED
        except asyncio.CancelledError:
            log.warning("Request cancelled", tracking_comment_id=tracking_comment_id)
            if tracking_comment_id is not None:
                await self._finalize_after_cancel(ctx, tracking_comment_id)
            raise

        return OUTCOME_COMPLETED if result.success else OUTCOME_FAILED

    async def _post_capacity_notice(self, ctx: BotContext) -> None:
        ctx.log.warning(
            "Concurrency limit reached, rejecting request",
            active=self.gate.active,
            limit=self.gate.limit,
        )
        notice = build_capacity_notice(self.trigger_phrase, self.gate.active, self.gate.limit)
        try:
            await ctx.github.create_issue_comment(
                ctx.owner, ctx.repo, ctx.entity_number, notice
            )
        except Exception as e:
            ctx.log.error("Failed to post capacity notice", error_type=type(e).__name__)

    async def _finalize_error(self, ctx: BotContext, tracking_comment_id: int) -> None:
        """Post the generic error notice. Failures are logged only."""
        try:
            await finalize_tracking_comment(
                ctx,
                tracking_comment_id,
                success=False,
                trigger_phrase=self.trigger_phrase,
                error=GENERIC_ERROR_MESSAGE,
            )
        except Exception as e:
            ctx.log.error(
                "Failed to post error notice on tracking comment",
                tracking_comment_id=tracking_comment_id,
                error_type=type(e).__name__,
            )

    async def _finalize_after_cancel(self, ctx: BotContext, tracking_comment_id: int) -> None:
        """Best-effort error notice for a cancelled delivery.

        The update is shielded so a repeated cancel cannot interrupt the
        request mid-flight, and bounded so shutdown is not held up.
        """
        try:
            await asyncio.wait_for(
                asyncio.shield(self._finalize_error(ctx, tracking_comment_id)),
                timeout=CANCEL_FINALIZE_TIMEOUT_SECONDS,
            )
        except (asyncio.TimeoutError, asyncio.CancelledError):
            ctx.log.error(
                "Gave up posting error notice for cancelled request",
                tracking_comment_id=tracking_comment_id,
            )

    async def _cleanup(self, workspace: CheckoutResult, log) -> None:
        try:
            await workspace.cleanup()
        except Exception as e:
            log.error(
                "Workspace cleanup failed",
                work_dir=workspace.work_dir,
                error_type=type(e).__name__,
            )

    async def _close_client(self, ctx: BotContext) -> None:
        try:
            await ctx.github.close()
        except Exception as e:
            ctx.log.warning("Failed to close GitHub client", error_type=type(e).__name__)

    def _log_completion(self, ctx: BotContext, result: ExecutionResult) -> None:
        ctx.log.info(
            "Request completed",
            success=result.success,
            duration_ms=result.duration_ms,
            cost_usd=result.cost_usd,
            num_turns=result.num_turns,
            is_pr=ctx.is_pr,
        )
        if self.metrics is not None:
            self.metrics.record_execution(result.duration_ms, result.cost_usd)

    def _record(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.record_outcome(outcome)
