"""Resolution of the MCP tool servers offered to the agent.

Each request gets its own server configuration: the stdio servers receive
the installation token and the coordinates of the request through their
environment, so one agent run can never touch another request's comment.
"""

import importlib.util
import sys
from pathlib import Path
from typing import Any, Dict, List

from src.mentionbot.config import BotSettings
from src.mentionbot.models import BotContext

CONTEXT7_URL = "https://mcp.context7.com/mcp"

# Root of the checkout holding the ``src`` package, so stdio servers can be
# launched with ``python -m`` from any working directory
PROJECT_ROOT = Path(__file__).resolve().parents[3]

COMMENT_SERVER_MODULE = "src.mentionbot.mcp.servers.comment"
INLINE_COMMENT_SERVER_MODULE = "src.mentionbot.mcp.servers.inline_comment"

# Modules the stdio servers need at launch
SERVER_MODULES = (COMMENT_SERVER_MODULE, INLINE_COMMENT_SERVER_MODULE, "fastmcp")

McpServerConfig = Dict[str, Dict[str, Any]]


def missing_server_modules() -> List[str]:
    """Return the server modules that cannot be located for import."""
    missing = []
    for name in SERVER_MODULES:
        try:
            found = importlib.util.find_spec(name) is not None
        except ModuleNotFoundError:
            found = False
        if not found:
            missing.append(name)
    return missing


class McpRegistry:
    """Builds the ``--mcp-config`` server map for one request."""

    def __init__(self, settings: BotSettings, python_executable: str = sys.executable):
        self.api_url = settings.github_api_url
        self.context7_api_key = settings.context7_api_key
        self.python_executable = python_executable

    def resolve(
        self,
        ctx: BotContext,
        tracking_comment_id: int,
        installation_token: str,
    ) -> McpServerConfig:
        """Return the server definitions for a request.

        - ``github_comment`` is always present.
        - ``github_inline_comment`` is added for pull requests.
        - ``context7`` is added when a Context7 API key is configured.
        """
        shared_env = {
            "GITHUB_TOKEN": installation_token,
            "REPO_OWNER": ctx.owner,
            "REPO_NAME": ctx.repo,
            "GITHUB_API_URL": self.api_url,
            "PYTHONPATH": str(PROJECT_ROOT),
        }

        servers: McpServerConfig = {
            "github_comment": self._stdio(
                COMMENT_SERVER_MODULE,
                {
                    **shared_env,
                    "CLAUDE_COMMENT_ID": str(tracking_comment_id),
                    "DELIVERY_ID": ctx.delivery_id,
                },
            ),
        }

        if ctx.is_pr:
            servers["github_inline_comment"] = self._stdio(
                INLINE_COMMENT_SERVER_MODULE,
                {**shared_env, "PR_NUMBER": str(ctx.entity_number)},
            )

        if self.context7_api_key:
            servers["context7"] = {
                "type": "http",
                "url": CONTEXT7_URL,
                "headers": {"CONTEXT7_API_KEY": self.context7_api_key},
            }

        return servers

    def _stdio(self, module: str, env: Dict[str, str]) -> Dict[str, Any]:
        return {
            "type": "stdio",
            "command": self.python_executable,
            "args": ["-m", module],
            "env": env,
        }
