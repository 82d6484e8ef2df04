"""Building request contexts from webhook payloads.

Parsing is strict: a payload missing a required field raises KeyError,
which the webhook handler reports as a malformed event.
"""

from dataclasses import fields
from typing import Any, Dict

from src.mentionbot.github.client import GitHubClient
from src.mentionbot.log_config import create_delivery_logger
from src.mentionbot.models import BotContext, EnrichedBotContext, FetchedData


def parse_issue_comment_event(
    payload: Dict[str, Any],
    github: GitHubClient,
    delivery_id: str,
) -> BotContext:
    """Parse an ``issue_comment`` payload.

    Issue comments on pull requests carry a ``pull_request`` key on the
    issue. Their branches are not in the payload and are resolved later
    from fetched data.
    """
    repository = payload["repository"]
    issue = payload["issue"]
    comment = payload["comment"]
    owner = repository["owner"]["login"]

    return BotContext(
        owner=owner,
        repo=repository["name"],
        entity_number=issue["number"],
        is_pr="pull_request" in issue and issue["pull_request"] is not None,
        event_name="issue_comment",
        trigger_username=comment["user"]["login"],
        trigger_timestamp=comment["created_at"],
        trigger_body=comment.get("body") or "",
        comment_id=comment["id"],
        delivery_id=delivery_id,
        default_branch=repository["default_branch"],
        github=github,
        log=create_delivery_logger(
            delivery_id, owner, repository["name"], issue["number"]
        ),
    )


def parse_review_comment_event(
    payload: Dict[str, Any],
    github: GitHubClient,
    delivery_id: str,
) -> BotContext:
    """Parse a ``pull_request_review_comment`` payload."""
    repository = payload["repository"]
    pull_request = payload["pull_request"]
    comment = payload["comment"]
    owner = repository["owner"]["login"]

    return BotContext(
        owner=owner,
        repo=repository["name"],
        entity_number=pull_request["number"],
        is_pr=True,
        event_name="pull_request_review_comment",
        trigger_username=comment["user"]["login"],
        trigger_timestamp=comment["created_at"],
        trigger_body=comment.get("body") or "",
        comment_id=comment["id"],
        delivery_id=delivery_id,
        default_branch=repository["default_branch"],
        head_branch=pull_request["head"]["ref"],
        base_branch=pull_request["base"]["ref"],
        github=github,
        log=create_delivery_logger(
            delivery_id, owner, repository["name"], pull_request["number"]
        ),
    )


def enrich_context(ctx: BotContext, data: FetchedData) -> EnrichedBotContext:
    """Return a new context with branches resolved from fetched data.

    Each branch falls back from the fetched value to the payload value and
    then to the repository default branch. The original context is left
    untouched.
    """
    values = {f.name: getattr(ctx, f.name) for f in fields(ctx)}
    values["head_branch"] = data.head_branch or ctx.head_branch or ctx.default_branch
    values["base_branch"] = data.base_branch or ctx.base_branch or ctx.default_branch
    return EnrichedBotContext(**values)
