"""Stdio MCP server exposing the tracking comment to the agent.

Provides the ``update_claude_comment`` tool. The agent cannot choose which
comment it edits: the comment id and repository come from the environment
set up by the registry for one request.

Environment variables:
- GITHUB_TOKEN: Installation access token
- REPO_OWNER, REPO_NAME: Repository coordinates
- CLAUDE_COMMENT_ID: Tracking comment to update
- DELIVERY_ID: Delivery whose marker must stay on the comment
- GITHUB_API_URL: Optional API base URL
"""

import json
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastmcp import FastMCP

from src.mentionbot.core.tracking_comment import delivery_marker
from src.mentionbot.github.client import GitHubClient
from src.mentionbot.utils.sanitize import sanitize_content

REQUIRED_ENV = ("REPO_OWNER", "REPO_NAME", "GITHUB_TOKEN", "CLAUDE_COMMENT_ID", "DELIVERY_ID")


@dataclass(frozen=True)
class CommentServerConfig:
    owner: str
    repo: str
    token: str
    comment_id: int
    delivery_id: str
    api_url: str = "https://api.github.com"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "CommentServerConfig":
        """Read the configuration, failing on any missing variable.

        Raises:
            ValueError: If a variable is missing or the comment id is not
                        an integer.
        """
        missing = [name for name in REQUIRED_ENV if not env.get(name)]
        if missing:
            raise ValueError(f"missing required environment variables: {', '.join(missing)}")
        try:
            comment_id = int(env["CLAUDE_COMMENT_ID"])
        except ValueError as e:
            raise ValueError(
                f"CLAUDE_COMMENT_ID must be an integer, got: {env['CLAUDE_COMMENT_ID']}"
            ) from e
        return cls(
            owner=env["REPO_OWNER"],
            repo=env["REPO_NAME"],
            token=env["GITHUB_TOKEN"],
            comment_id=comment_id,
            delivery_id=env["DELIVERY_ID"],
            api_url=env.get("GITHUB_API_URL") or "https://api.github.com",
        )


def static_token(token: str):
    async def provide() -> str:
        return token

    return provide


async def update_comment(
    config: CommentServerConfig,
    github: GitHubClient,
    body: str,
) -> Dict[str, Any]:
    """Sanitize the body, restore the delivery marker and update the comment.

    Sanitization strips HTML comments, which removes the marker; it is
    re-prepended so the durable idempotency check still finds it.
    """
    final_body = f"{delivery_marker(config.delivery_id)}\n{sanitize_content(body)}"
    result = await github.update_issue_comment(
        config.owner, config.repo, config.comment_id, final_body
    )
    return {"success": True, "id": result.get("id")}


def create_server(config: CommentServerConfig, github: Optional[GitHubClient] = None) -> FastMCP:
    """Build the FastMCP server bound to one tracking comment."""
    github = github or GitHubClient(static_token(config.token), base_url=config.api_url)
    mcp = FastMCP("GitHub Comment Server")

    @mcp.tool
    async def update_claude_comment(body: str) -> str:
        """Update the Claude comment with progress and results.

        Args:
            body: The updated comment content in markdown.
        """
        result = await update_comment(config, github, body)
        return json.dumps(result)

    return mcp


def main() -> None:
    try:
        config = CommentServerConfig.from_env(os.environ)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    create_server(config).run()


if __name__ == "__main__":
    main()
