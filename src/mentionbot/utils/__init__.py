"""Shared utilities: retry with backoff and content sanitization."""

from src.mentionbot.utils.retry import RetryPolicy, is_permanent_error, retry_with_backoff
from src.mentionbot.utils.sanitize import sanitize_content

__all__ = [
    "RetryPolicy",
    "is_permanent_error",
    "retry_with_backoff",
    "sanitize_content",
]
