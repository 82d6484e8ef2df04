"""The tracking comment: one bot comment per delivery, edited in place.

The comment is created before any heavy work starts, updated by the agent
while it runs, and finalized exactly once with a success summary or a
generic error notice. Its body always starts with a hidden marker holding
the delivery id, which doubles as the durable idempotency record.
"""

import re
from typing import Optional

from src.mentionbot.models import BotContext

DEFAULT_TRIGGER_PHRASE = "@mention-bot"

GENERIC_ERROR_MESSAGE = "An internal error occurred. Check server logs for details."

SPINNER_HTML = (
    '<img src="https://github.com/user-attachments/assets/'
    '5ac382c7-e004-429b-8e35-7feb3e8f9c6f" width="14px" height="14px" '
    'style="vertical-align: middle; margin-left: 4px;" />'
)

_MARKER_PATTERN = re.compile(r"<!-- delivery:[^>]*? -->\n?")

# Page size for the durable check. The listing is oldest first and is
# narrowed with ``since`` to comments newer than the triggering event.
DURABLE_CHECK_PAGE_SIZE = 100


def delivery_marker(delivery_id: str) -> str:
    return f"<!-- delivery:{delivery_id} -->"


async def is_already_processed(ctx: BotContext) -> bool:
    """Check the comment thread for this delivery's marker.

    Raises:
        GitHubAPIError: If listing comments fails.
    """
    marker = delivery_marker(ctx.delivery_id)
    comments = await ctx.github.list_issue_comments(
        ctx.owner,
        ctx.repo,
        ctx.entity_number,
        since=ctx.trigger_timestamp,
        per_page=DURABLE_CHECK_PAGE_SIZE,
    )
    return any(marker in (comment.get("body") or "") for comment in comments)


async def create_tracking_comment(
    ctx: BotContext,
    trigger_phrase: str = DEFAULT_TRIGGER_PHRASE,
) -> int:
    """Post the initial "working" comment.

    Returns:
        The new comment's id.
    """
    body = (
        f"{delivery_marker(ctx.delivery_id)}\n"
        f"{SPINNER_HTML} **{trigger_phrase}** is working on this...\n\n"
        "_Analyzing your request..._"
    )
    result = await ctx.github.create_issue_comment(
        ctx.owner, ctx.repo, ctx.entity_number, body
    )
    ctx.log.info("Created tracking comment", tracking_comment_id=result["id"])
    return result["id"]


async def update_tracking_comment(ctx: BotContext, comment_id: int, body: str) -> None:
    # Tracking comments are issue comments even on review comment events
    await ctx.github.update_issue_comment(ctx.owner, ctx.repo, comment_id, body)


def build_summary_header(
    trigger_phrase: str,
    username: str,
    success: bool,
    duration_ms: Optional[float] = None,
    cost_usd: Optional[float] = None,
) -> str:
    """Build the first line of a finalized tracking comment.

    Only the fields that are present appear in the summary.
    """
    if not success:
        return (
            f"**{trigger_phrase} encountered an error** "
            f"while processing @{username}'s request"
        )

    duration = f"{duration_ms / 1000:.1f}s" if duration_ms is not None else "unknown"
    details = [duration]
    if cost_usd is not None:
        details.append(f"${cost_usd:.4f}")
    return f"**{trigger_phrase} finished @{username}'s task** ({', '.join(details)})"


def strip_progress_markup(body: str) -> str:
    """Remove the spinner and any delivery marker from a comment body."""
    return _MARKER_PATTERN.sub("", body.replace(SPINNER_HTML, ""))


async def finalize_tracking_comment(
    ctx: BotContext,
    comment_id: int,
    success: bool,
    trigger_phrase: str = DEFAULT_TRIGGER_PHRASE,
    duration_ms: Optional[float] = None,
    cost_usd: Optional[float] = None,
    error: Optional[str] = None,
) -> None:
    """Write the terminal state of the tracking comment.

    The agent's progress text is kept below the header. The delivery marker
    is re-prepended because agent updates may have removed it.

    Args:
        ctx: Request context.
        comment_id: Tracking comment id.
        success: Whether the agent run succeeded.
        trigger_phrase: Bot name shown in the header.
        duration_ms: Agent duration, if reported.
        cost_usd: Agent cost, if reported.
        error: User-visible error text. Must never contain internal detail.

    Raises:
        GitHubAPIError: If the update fails.
    """
    header = build_summary_header(
        trigger_phrase, ctx.trigger_username, success, duration_ms, cost_usd
    )

    existing_body = ""
    try:
        comment = await ctx.github.get_issue_comment(ctx.owner, ctx.repo, comment_id)
        existing_body = comment.get("body") or ""
    except Exception as e:
        ctx.log.warning(
            "Could not read tracking comment, finalizing with header only",
            tracking_comment_id=comment_id,
            error_type=type(e).__name__,
        )

    error_section = f"\n\n---\n**Error:** {error}" if error else ""
    final_body = (
        f"{delivery_marker(ctx.delivery_id)}\n{header}\n\n---\n"
        f"{strip_progress_markup(existing_body)}{error_section}"
    )
    await update_tracking_comment(ctx, comment_id, final_body)


def build_capacity_notice(trigger_phrase: str, active: int, limit: int) -> str:
    return (
        f"**{trigger_phrase}** is at capacity ({active}/{limit} concurrent "
        "requests active). Please re-trigger in a moment."
    )
