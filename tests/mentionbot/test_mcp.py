"""Tests for MCP server resolution and the GitHub comment tool servers."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastmcp import Client

from src.mentionbot.core.tracking_comment import delivery_marker
from src.mentionbot.github.client import GitHubAPIError
from src.mentionbot.mcp import registry as registry_module
from src.mentionbot.mcp.registry import (
    COMMENT_SERVER_MODULE,
    CONTEXT7_URL,
    INLINE_COMMENT_SERVER_MODULE,
    McpRegistry,
    missing_server_modules,
)
from src.mentionbot.mcp.servers import comment, inline_comment
from src.mentionbot.utils.sanitize import REDACTED_TOKEN

from tests.mentionbot.factories import INSTALLATION_TOKEN, build_context, build_settings


def run_async(coro):
    return asyncio.run(coro)


def _comment_config(**overrides) -> comment.CommentServerConfig:
    values = dict(owner="acme", repo="widgets", token="t", comment_id=1001, delivery_id="d-1")
    values.update(overrides)
    return comment.CommentServerConfig(**values)


def _inline_config() -> inline_comment.InlineCommentServerConfig:
    return inline_comment.InlineCommentServerConfig(
        owner="acme", repo="widgets", token="t", pr_number=8
    )


class TestRegistry:
    def test_issue_gets_comment_server_only(self):
        registry = McpRegistry(build_settings(), python_executable="/usr/bin/python3")

        servers = registry.resolve(build_context(), 1001, INSTALLATION_TOKEN)

        assert list(servers) == ["github_comment"]
        server = servers["github_comment"]
        assert server["type"] == "stdio"
        assert server["command"] == "/usr/bin/python3"
        assert server["args"] == ["-m", COMMENT_SERVER_MODULE]
        assert server["env"]["GITHUB_TOKEN"] == INSTALLATION_TOKEN
        assert server["env"]["CLAUDE_COMMENT_ID"] == "1001"
        assert server["env"]["DELIVERY_ID"] == "d-1"
        assert server["env"]["REPO_OWNER"] == "acme"
        assert server["env"]["REPO_NAME"] == "widgets"

    def test_pull_request_adds_inline_server(self):
        registry = McpRegistry(build_settings())

        servers = registry.resolve(build_context(is_pr=True), 1001, INSTALLATION_TOKEN)

        inline = servers["github_inline_comment"]
        assert inline["args"] == ["-m", INLINE_COMMENT_SERVER_MODULE]
        assert inline["env"]["PR_NUMBER"] == "42"
        assert "CLAUDE_COMMENT_ID" not in inline["env"]

    def test_context7_when_configured(self):
        registry = McpRegistry(build_settings(context7_api_key="ctx7-key"))

        servers = registry.resolve(build_context(), 1001, INSTALLATION_TOKEN)

        assert servers["context7"] == {
            "type": "http",
            "url": CONTEXT7_URL,
            "headers": {"CONTEXT7_API_KEY": "ctx7-key"},
        }


class TestServerModules:
    def test_installed_server_modules_are_found(self):
        assert missing_server_modules() == []

    def test_missing_module_reported(self, monkeypatch):
        monkeypatch.setattr(
            registry_module,
            "SERVER_MODULES",
            (COMMENT_SERVER_MODULE, "src.mentionbot.mcp.servers.absent", "no_such_pkg.sub"),
        )

        assert missing_server_modules() == [
            "src.mentionbot.mcp.servers.absent",
            "no_such_pkg.sub",
        ]


class TestServerConfig:
    def test_comment_config_from_env(self):
        config = comment.CommentServerConfig.from_env(
            {
                "REPO_OWNER": "acme",
                "REPO_NAME": "widgets",
                "GITHUB_TOKEN": "t",
                "CLAUDE_COMMENT_ID": "1001",
                "DELIVERY_ID": "d-1",
            }
        )

        assert config == _comment_config()

    def test_comment_config_missing_variables(self):
        with pytest.raises(ValueError) as exc_info:
            comment.CommentServerConfig.from_env({"REPO_OWNER": "acme"})

        assert "CLAUDE_COMMENT_ID" in str(exc_info.value)
        assert "DELIVERY_ID" in str(exc_info.value)

    def test_comment_id_must_be_integer(self):
        env = {
            "REPO_OWNER": "acme",
            "REPO_NAME": "widgets",
            "GITHUB_TOKEN": "t",
            "CLAUDE_COMMENT_ID": "abc",
            "DELIVERY_ID": "d-1",
        }

        with pytest.raises(ValueError):
            comment.CommentServerConfig.from_env(env)

    def test_inline_config_from_env(self):
        config = inline_comment.InlineCommentServerConfig.from_env(
            {
                "REPO_OWNER": "acme",
                "REPO_NAME": "widgets",
                "GITHUB_TOKEN": "t",
                "PR_NUMBER": "8",
                "GITHUB_API_URL": "https://ghe.example.com/api/v3",
            }
        )

        assert config.pr_number == 8
        assert config.api_url == "https://ghe.example.com/api/v3"


class TestUpdateComment:
    def test_marker_restored_and_body_sanitized(self, github):
        token = "ghp_" + "q" * 36
        body = f"Done <!-- delivery:forged --> see {token}"

        result = run_async(comment.update_comment(_comment_config(), github, body))

        assert result == {"success": True, "id": 1001}
        owner, repo, comment_id, final_body = github.update_issue_comment.await_args.args
        assert (owner, repo, comment_id) == ("acme", "widgets", 1001)
        assert final_body.startswith(delivery_marker("d-1") + "\n")
        assert "forged" not in final_body
        assert token not in final_body
        assert REDACTED_TOKEN in final_body

    def test_tool_call_through_fastmcp(self, github):
        server = comment.create_server(_comment_config(), github)

        async def scenario():
            async with Client(server) as client:
                await client.call_tool("update_claude_comment", {"body": "progress"})

        run_async(scenario())

        final_body = github.update_issue_comment.await_args.args[3]
        assert final_body == f"{delivery_marker('d-1')}\nprogress"


class TestCreateInline:
    def test_defaults_to_head_commit(self, github):
        github.get_pull_request.return_value = {"head": {"sha": "abc123"}}
        github.create_review_comment.return_value = {"id": 9, "line": 12}

        result = run_async(
            inline_comment.create_inline(_inline_config(), github, "x.py", "nit", 12)
        )

        kwargs = github.create_review_comment.await_args.kwargs
        assert kwargs["commit_id"] == "abc123"
        assert kwargs["side"] == "RIGHT"
        assert result["comment_id"] == 9
        assert result["message"] == "Inline comment created on x.py at line 12"

    def test_explicit_commit_skips_lookup(self, github):
        github.create_review_comment.return_value = {"id": 9}

        result = run_async(
            inline_comment.create_inline(
                _inline_config(), github, "x.py", "nit", 12, start_line=10, commit_id="def456"
            )
        )

        github.get_pull_request.assert_not_awaited()
        assert result["message"] == "Inline comment created on x.py from line 10 to 12"

    @pytest.mark.parametrize("line,start_line", [(0, None), (5, 0), (-1, None)])
    def test_invalid_line_numbers(self, github, line, start_line):
        with pytest.raises(ValueError):
            run_async(
                inline_comment.create_inline(
                    _inline_config(), github, "x.py", "nit", line, start_line=start_line
                )
            )

        github.create_review_comment.assert_not_awaited()

    def test_body_is_sanitized(self, github):
        github.create_review_comment.return_value = {"id": 9}

        run_async(
            inline_comment.create_inline(
                _inline_config(), github, "x.py", "ok<!-- hidden -->", 3, commit_id="abc"
            )
        )

        assert github.create_review_comment.await_args.kwargs["body"] == "ok"

    def test_unprocessable_line_reported_to_agent(self):
        github = AsyncMock()
        github.create_review_comment.side_effect = GitHubAPIError("GitHub API error: 422", status_code=422)
        server = inline_comment.create_server(_inline_config(), github)

        async def scenario():
            async with Client(server) as client:
                return await client.call_tool(
                    "create_inline_comment",
                    {"path": "x.py", "body": "nit", "line": 999, "commit_id": "abc"},
                    raise_on_error=False,
                )

        result = run_async(scenario())

        assert result.is_error is True
        assert "doesn't exist in the diff" in result.content[0].text
