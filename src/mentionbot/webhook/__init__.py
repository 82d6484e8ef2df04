"""GitHub webhook handling for the mention bot.

This module verifies and routes GitHub webhook deliveries:
- issue_comment.created - Comment on an issue or pull request
- pull_request_review_comment.created - Inline comment on a PR diff

Matching deliveries are handed to the request pipeline in the background
so the HTTP response is sent immediately.
"""

from src.mentionbot.webhook.handler import (
    STATUS_ACCEPTED,
    STATUS_IGNORED,
    MalformedEventError,
    WebhookHandler,
)
from src.mentionbot.webhook.signature import compute_signature, verify_signature

__all__ = [
    "MalformedEventError",
    "STATUS_ACCEPTED",
    "STATUS_IGNORED",
    "WebhookHandler",
    "compute_signature",
    "verify_signature",
]
