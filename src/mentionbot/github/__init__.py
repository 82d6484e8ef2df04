"""GitHub API access for the mention bot.

This module provides:
- GitHub App authentication (app JWT and installation tokens)
- A single-attempt REST and GraphQL client
- Error types carrying HTTP status codes for retry classification
"""

from src.mentionbot.github.auth import GitHubAppAuth
from src.mentionbot.github.client import (
    GitHubAPIError,
    GitHubClient,
    NotFoundError,
    RateLimitError,
)

__all__ = [
    "GitHubAPIError",
    "GitHubAppAuth",
    "GitHubClient",
    "NotFoundError",
    "RateLimitError",
]
