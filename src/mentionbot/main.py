"""FastAPI application entry point for the mention bot.

This module provides the HTTP surface of the bot: the GitHub webhook
receiver, liveness and readiness probes, and Prometheus metrics. Webhook
deliveries are verified, acknowledged immediately and processed in the
background by the request pipeline.
"""

import asyncio
import contextlib
import json
import os
from contextlib import asynccontextmanager
from typing import Optional

import structlog
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry

from src.mentionbot.config import BotSettings, get_settings
from src.mentionbot.core.checkout import RepositoryCheckout, sweep_stale_credential_helpers
from src.mentionbot.core.concurrency import ConcurrencyGate
from src.mentionbot.core.executor import AgentExecutor
from src.mentionbot.core.fetcher import DataFetcher
from src.mentionbot.core.idempotency import IdempotencyGuard
from src.mentionbot.core.pipeline import RequestPipeline
from src.mentionbot.core.prompt_builder import PromptBuilder
from src.mentionbot.github.auth import GitHubAppAuth
from src.mentionbot.github.client import GitHubClient
from src.mentionbot.log_config import configure_logging, redact_secret
from src.mentionbot.mcp.registry import McpRegistry, missing_server_modules
from src.mentionbot.metrics import BotMetrics
from src.mentionbot.utils.retry import RetryPolicy
from src.mentionbot.webhook.handler import (
    STATUS_ACCEPTED,
    MalformedEventError,
    WebhookHandler,
)
from src.mentionbot.webhook.signature import verify_signature

logger = structlog.get_logger(__name__)

SHUTDOWN_DRAIN_SECONDS = 30.0
RESERVATION_SWEEP_INTERVAL_SECONDS = 300.0

# Global instances, initialized during lifespan startup
settings: Optional[BotSettings] = None
webhook_handler: Optional[WebhookHandler] = None
bot_metrics: Optional[BotMetrics] = None
ready = False


def _log_configuration(cfg: BotSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info(
        "Mention bot configuration",
        github_app_id=cfg.github_app_id,
        github_api_url=cfg.github_api_url,
        github_webhook_secret=redact_secret(cfg.github_webhook_secret),
        claude_provider=cfg.claude_provider,
        claude_model=cfg.claude_model,
        claude_code_path=cfg.claude_code_path,
        agent_timeout_seconds=cfg.agent_timeout_seconds,
        trigger_phrase=cfg.trigger_phrase,
        max_concurrent_requests=cfg.max_concurrent_requests,
        idempotency_ttl_seconds=cfg.idempotency_ttl_seconds,
        retry_max_attempts=cfg.retry_max_attempts,
        clone_base_dir=cfg.clone_base_dir,
        context7_enabled=cfg.context7_enabled,
        host=cfg.host,
        port=cfg.port,
    )


def _build_pipeline(
    cfg: BotSettings,
    guard: IdempotencyGuard,
    metrics: BotMetrics,
) -> RequestPipeline:
    """Wire all collaborators into a RequestPipeline."""
    return RequestPipeline(
        guard=guard,
        gate=ConcurrencyGate(cfg.max_concurrent_requests, metrics=metrics),
        fetcher=DataFetcher(),
        prompt_builder=PromptBuilder(cfg),
        checkout=RepositoryCheckout(cfg),
        registry=McpRegistry(cfg),
        executor=AgentExecutor(cfg),
        comment_retry=RetryPolicy(
            max_attempts=cfg.retry_max_attempts,
            initial_delay=cfg.retry_initial_delay_seconds,
            max_delay=cfg.retry_max_delay_seconds,
            backoff_factor=cfg.retry_backoff_factor,
        ),
        fetch_retry=RetryPolicy(
            max_attempts=cfg.retry_max_attempts,
            initial_delay=cfg.fetch_retry_initial_delay_seconds,
            max_delay=cfg.retry_max_delay_seconds,
            backoff_factor=cfg.retry_backoff_factor,
        ),
        agent_timeout_seconds=cfg.agent_timeout_seconds,
        trigger_phrase=cfg.trigger_phrase,
        metrics=metrics,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and logging setup
    - Workspace directory preparation and stale credential cleanup
    - Checking that the MCP tool server modules can be launched
    - Dependency wiring for the request pipeline
    - Draining in-flight requests on shutdown
    """
    global settings, webhook_handler, bot_metrics, ready

    ready = False
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)
    logger.info("Mention bot starting up")
    _log_configuration(settings)

    os.makedirs(settings.clone_base_dir, exist_ok=True)
    sweep_stale_credential_helpers(settings.clone_base_dir)

    missing = missing_server_modules()
    if missing:
        logger.error("MCP server modules not importable", modules=missing)
        raise RuntimeError(f"MCP server modules not importable: {', '.join(missing)}")

    bot_metrics = BotMetrics(registry=CollectorRegistry())
    app_auth = GitHubAppAuth(
        app_id=settings.github_app_id,
        private_key=settings.github_app_private_key,
        api_url=settings.github_api_url,
    )
    api_url = settings.github_api_url

    def client_factory(installation_id: int) -> GitHubClient:
        return GitHubClient(app_auth.token_provider(installation_id), base_url=api_url)

    guard = IdempotencyGuard(ttl_seconds=settings.idempotency_ttl_seconds)
    webhook_handler = WebhookHandler(
        pipeline=_build_pipeline(settings, guard, bot_metrics),
        client_factory=client_factory,
        trigger_phrase=settings.trigger_phrase,
    )
    sweeper = asyncio.create_task(
        guard.run_periodic_sweep(
            min(RESERVATION_SWEEP_INTERVAL_SECONDS, settings.idempotency_ttl_seconds)
        )
    )

    ready = True
    logger.info("Mention bot started", host=settings.host, port=settings.port)

    yield

    ready = False
    logger.info("Mention bot shutting down", in_flight=webhook_handler.in_flight)

    sweeper.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweeper

    await webhook_handler.drain(timeout=SHUTDOWN_DRAIN_SECONDS)
    await app_auth.close()

    logger.info("Mention bot shutdown complete")


app = FastAPI(
    title="GitHub Mention Bot",
    description="Runs a coding agent when the bot is mentioned on issues and pull requests",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/healthz", response_class=PlainTextResponse)
async def healthz():
    """Liveness probe endpoint."""
    return "ok"


@app.get("/readyz", response_class=PlainTextResponse)
async def readyz():
    """Readiness probe endpoint.

    Returns 200 once startup completed and 503 while starting or shutting
    down.
    """
    if not ready:
        return PlainTextResponse("not ready", status_code=503)
    return "ready"


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    if bot_metrics is None:
        return Response(b"", media_type=CONTENT_TYPE_LATEST)
    return Response(bot_metrics.generate(), media_type=CONTENT_TYPE_LATEST)


@app.post("/api/github/webhooks")
async def github_webhook(request: Request):
    """GitHub webhook receiver endpoint.

    Verifies the signature over the raw body, routes the delivery and
    answers without waiting for the pipeline.

    Returns:
        202 when a pipeline run was dispatched, 200 when the delivery was
        ignored, 400 for malformed deliveries, 401 for bad signatures and
        503 while starting up or shutting down.
    """
    if webhook_handler is None or settings is None or not ready:
        logger.warning("Webhook received while not ready")
        return JSONResponse({"status": "error", "message": "Not ready"}, status_code=503)

    body = await request.body()
    if not verify_signature(
        body,
        request.headers.get("X-Hub-Signature-256"),
        settings.github_webhook_secret,
    ):
        logger.warning("Rejected webhook with invalid signature")
        return JSONResponse(
            {"status": "error", "message": "Invalid signature"}, status_code=401
        )

    delivery_id = request.headers.get("X-GitHub-Delivery")
    if not delivery_id:
        return JSONResponse(
            {"status": "error", "message": "Missing X-GitHub-Delivery header"},
            status_code=400,
        )

    try:
        payload = json.loads(body)
    except ValueError:
        return JSONResponse(
            {"status": "error", "message": "Malformed JSON payload"}, status_code=400
        )
    if not isinstance(payload, dict):
        return JSONResponse(
            {"status": "error", "message": "Malformed JSON payload"}, status_code=400
        )

    event_name = request.headers.get("X-GitHub-Event", "")
    try:
        status = webhook_handler.handle(event_name, delivery_id, payload)
    except MalformedEventError as e:
        logger.warning("Malformed webhook payload", delivery_id=delivery_id, error=str(e))
        return JSONResponse(
            {"status": "error", "message": "Malformed event payload"}, status_code=400
        )

    status_code = 202 if status == STATUS_ACCEPTED else 200
    return JSONResponse({"status": status, "delivery_id": delivery_id}, status_code=status_code)


def main() -> None:
    cfg = get_settings()
    uvicorn.run(app, host=cfg.host, port=cfg.port)


if __name__ == "__main__":
    main()
