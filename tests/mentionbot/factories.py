"""Builders for contexts, settings and GitHub client doubles."""

from typing import Any
from unittest.mock import AsyncMock, MagicMock

from src.mentionbot.config import BotSettings
from src.mentionbot.models import BotContext

INSTALLATION_TOKEN = "ghs_" + "A1b2C3d4E5" * 3 + "F6g7H8"


def build_github() -> AsyncMock:
    """An AsyncMock standing in for GitHubClient with benign defaults."""
    github = AsyncMock()
    github.list_issue_comments.return_value = []
    github.create_issue_comment.return_value = {"id": 1001}
    github.update_issue_comment.return_value = {"id": 1001}
    github.get_issue_comment.return_value = {"body": "working..."}
    github.installation_token.return_value = INSTALLATION_TOKEN
    return github


def build_context(github: Any = None, **overrides: Any) -> BotContext:
    values = dict(
        owner="acme",
        repo="widgets",
        entity_number=42,
        is_pr=False,
        event_name="issue_comment",
        trigger_username="dev1",
        trigger_timestamp="2024-05-01T12:00:00Z",
        trigger_body="@mention-bot please help",
        comment_id=555,
        delivery_id="d-1",
        default_branch="main",
        github=github if github is not None else build_github(),
        log=MagicMock(),
    )
    values.update(overrides)
    return BotContext(**values)


def build_settings(**overrides: Any) -> BotSettings:
    values = dict(
        github_app_id="12345",
        github_app_private_key="test-private-key",
        github_webhook_secret="webhook-secret",
        anthropic_api_key="sk-ant-test",
        claude_provider="anthropic",
        clone_base_dir="/tmp/mentionbot-tests",
    )
    values.update(overrides)
    return BotSettings(**values)
