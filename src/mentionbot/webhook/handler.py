"""Routing of GitHub webhook deliveries into the request pipeline.

Signature verification happens in the HTTP layer before a delivery reaches
this handler. The handler decides whether a delivery is a mention of the
bot, builds its request context and dispatches it fire-and-forget: the
pipeline runs as a background task and the caller gets an answer
immediately.

GitHub Webhook Payload Structure (issue_comment event):
{
  "action": "created",
  "issue": {"number": 123, "pull_request": {...}},
  "comment": {
    "id": 456,
    "body": "@mention-bot please fix this",
    "created_at": "2024-01-01T00:00:00Z",
    "user": {"login": "username", "type": "User"}
  },
  "repository": {
    "name": "repo-name",
    "default_branch": "main",
    "owner": {"login": "owner-name"}
  },
  "installation": {"id": 789}
}
"""

import asyncio
from typing import Any, Callable, Dict, Optional, Set

import structlog

from src.mentionbot.core.context import (
    parse_issue_comment_event,
    parse_review_comment_event,
)
from src.mentionbot.core.pipeline import RequestPipeline
from src.mentionbot.core.trigger import contains_trigger
from src.mentionbot.github.client import GitHubClient
from src.mentionbot.models import BotContext

logger = structlog.get_logger(__name__)

STATUS_ACCEPTED = "accepted"
STATUS_IGNORED = "ignored"

# Events acknowledged without processing
_IGNORED_ACTIONS = {
    "pull_request": {"opened"},
    "pull_request_review": {"submitted"},
    "pull_request_review_thread": {"resolved", "unresolved"},
}

_CONTEXT_PARSERS = {
    "issue_comment": parse_issue_comment_event,
    "pull_request_review_comment": parse_review_comment_event,
}

ClientFactory = Callable[[int], GitHubClient]


class MalformedEventError(ValueError):
    """Raised when a delivery lacks fields required to process it."""


class WebhookHandler:
    """Routes verified deliveries and launches pipeline tasks.

    Attributes:
        pipeline: Request pipeline run for each mention.
        trigger_phrase: Mention that activates the bot.
    """

    def __init__(
        self,
        pipeline: RequestPipeline,
        client_factory: ClientFactory,
        trigger_phrase: str,
    ):
        """Initialize the webhook handler.

        Args:
            pipeline: Request pipeline to dispatch contexts to.
            client_factory: Builds a GitHub client for an installation id.
                            Each delivery gets its own client, closed by the
                            pipeline when processing ends.
            trigger_phrase: Mention that activates the bot.
        """
        self.pipeline = pipeline
        self.client_factory = client_factory
        self.trigger_phrase = trigger_phrase
        self._tasks: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def handle(self, event_name: str, delivery_id: str, payload: Dict[str, Any]) -> str:
        """Route one delivery.

        Must be called from a running event loop.

        Args:
            event_name: X-GitHub-Event header value.
            delivery_id: X-GitHub-Delivery header value.
            payload: Decoded JSON payload.

        Returns:
            STATUS_ACCEPTED when a pipeline task was launched, otherwise
            STATUS_IGNORED.

        Raises:
            MalformedEventError: If a matching delivery lacks required fields.
        """
        log = logger.bind(delivery_id=delivery_id, event=event_name)
        action = payload.get("action")

        if action in _IGNORED_ACTIONS.get(event_name, ()):
            log.info("Event acknowledged, no action taken", action=action)
            return STATUS_IGNORED

        parser = _CONTEXT_PARSERS.get(event_name)
        if parser is None or action != "created":
            log.debug("Ignoring unsupported event", action=action)
            return STATUS_IGNORED

        comment = payload.get("comment")
        if not isinstance(comment, dict):
            raise MalformedEventError("comment payload missing")

        author = comment.get("user") or {}
        if author.get("type") == "Bot":
            log.debug("Ignoring comment from bot account", author=author.get("login"))
            return STATUS_IGNORED

        if not contains_trigger(comment.get("body") or "", self.trigger_phrase):
            log.debug("No trigger phrase in comment")
            return STATUS_IGNORED

        try:
            installation_id = payload["installation"]["id"]
            ctx = parser(payload, self.client_factory(installation_id), delivery_id)
        except (KeyError, TypeError) as e:
            raise MalformedEventError(f"malformed {event_name} payload: missing {e}") from e

        ctx.log.info(
            "Mention received, dispatching",
            event_name=event_name,
            trigger_username=ctx.trigger_username,
            is_pr=ctx.is_pr,
        )
        self.dispatch(ctx)
        return STATUS_ACCEPTED

    def dispatch(self, ctx: BotContext) -> asyncio.Task:
        """Launch the pipeline for a context without awaiting it.

        The task is held until done so it is not garbage collected, and any
        exception escaping the pipeline is logged by the done callback.
        """
        task = asyncio.create_task(
            self.pipeline.process_request(ctx),
            name=f"delivery-{ctx.delivery_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("Pipeline task cancelled", task=task.get_name())
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Pipeline task failed",
                task=task.get_name(),
                error_type=type(error).__name__,
                exc_info=error,
            )

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for in-flight pipeline tasks.

        Tasks still running when the wait ends are cancelled and awaited,
        which lets each of them post its error notice before shutdown.

        Args:
            timeout: Maximum seconds to wait, or None to wait indefinitely.

        Returns:
            Number of tasks that had to be cancelled.
        """
        if not self._tasks:
            return 0
        _, pending = await asyncio.wait(set(self._tasks), timeout=timeout)
        if pending:
            logger.warning(
                "Cancelling pipeline tasks still running at shutdown",
                pending=len(pending),
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
        return len(pending)
