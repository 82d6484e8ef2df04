"""Stdio MCP server for inline pull request review comments.

Provides the ``create_inline_comment`` tool, registered for pull requests
only.

Environment variables:
- GITHUB_TOKEN: Installation access token
- REPO_OWNER, REPO_NAME: Repository coordinates
- PR_NUMBER: Pull request to comment on
- GITHUB_API_URL: Optional API base URL
"""

import json
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, Literal, Mapping, Optional

from fastmcp import FastMCP

from src.mentionbot.github.client import GitHubAPIError, GitHubClient
from src.mentionbot.mcp.servers.comment import static_token
from src.mentionbot.utils.sanitize import sanitize_content

REQUIRED_ENV = ("REPO_OWNER", "REPO_NAME", "PR_NUMBER", "GITHUB_TOKEN")


@dataclass(frozen=True)
class InlineCommentServerConfig:
    owner: str
    repo: str
    token: str
    pr_number: int
    api_url: str = "https://api.github.com"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "InlineCommentServerConfig":
        missing = [name for name in REQUIRED_ENV if not env.get(name)]
        if missing:
            raise ValueError(f"missing required environment variables: {', '.join(missing)}")
        try:
            pr_number = int(env["PR_NUMBER"])
        except ValueError as e:
            raise ValueError(f"PR_NUMBER must be an integer, got: {env['PR_NUMBER']}") from e
        return cls(
            owner=env["REPO_OWNER"],
            repo=env["REPO_NAME"],
            token=env["GITHUB_TOKEN"],
            pr_number=pr_number,
            api_url=env.get("GITHUB_API_URL") or "https://api.github.com",
        )


async def create_inline(
    config: InlineCommentServerConfig,
    github: GitHubClient,
    path: str,
    body: str,
    line: int,
    start_line: Optional[int] = None,
    side: str = "RIGHT",
    commit_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Create one inline comment, defaulting to the PR's head commit.

    Raises:
        ValueError: If a line number is below one.
        GitHubAPIError: If GitHub rejects the comment.
    """
    if line < 1 or (start_line is not None and start_line < 1):
        raise ValueError("line numbers must be >= 1")

    if not commit_id:
        pr = await github.get_pull_request(config.owner, config.repo, config.pr_number)
        commit_id = pr["head"]["sha"]

    result = await github.create_review_comment(
        config.owner,
        config.repo,
        config.pr_number,
        body=sanitize_content(body),
        path=path,
        commit_id=commit_id,
        line=line,
        start_line=start_line,
        side=side,
    )

    if start_line is None:
        location = f"at line {line}"
    else:
        location = f"from line {start_line} to {line}"
    return {
        "success": True,
        "comment_id": result.get("id"),
        "html_url": result.get("html_url"),
        "path": result.get("path", path),
        "line": result.get("line") or result.get("original_line"),
        "message": f"Inline comment created on {path} {location}",
    }


def create_server(
    config: InlineCommentServerConfig,
    github: Optional[GitHubClient] = None,
) -> FastMCP:
    github = github or GitHubClient(static_token(config.token), base_url=config.api_url)
    mcp = FastMCP("GitHub Inline Comment Server")

    @mcp.tool
    async def create_inline_comment(
        path: str,
        body: str,
        line: int,
        start_line: Optional[int] = None,
        side: Literal["LEFT", "RIGHT"] = "RIGHT",
        commit_id: Optional[str] = None,
    ) -> str:
        """Create an inline comment on a specific line or lines in a PR file.

        Args:
            path: The file path to comment on (e.g., 'src/index.js').
            body: The comment text. Supports markdown and ```suggestion blocks,
                  which REPLACE the entire line range.
            line: Line number (end line for multi-line comments), >= 1.
            start_line: Start line for multi-line comments, >= 1.
            side: LEFT (old) or RIGHT (new) side of the diff.
            commit_id: Commit SHA to comment on (defaults to the PR head).
        """
        try:
            result = await create_inline(
                config, github, path, body, line, start_line, side, commit_id
            )
        except GitHubAPIError as e:
            hint = ""
            if e.status_code == 422:
                hint = " The line number doesn't exist in the diff or the file path is incorrect."
            raise ValueError(f"Error creating inline comment: {e.message}.{hint}") from e
        return json.dumps(result)

    return mcp


def main() -> None:
    try:
        config = InlineCommentServerConfig.from_env(os.environ)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    create_server(config).run()


if __name__ == "__main__":
    main()
