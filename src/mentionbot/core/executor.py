"""Agent CLI subprocess management.

Runs the agent CLI in the cloned working directory with the prompt on
stdin and ``stream-json`` output on stdout. Each stdout line is a JSON
message; the final ``{"type": "result"}`` message carries the outcome,
duration, cost and turn count.

The executor has no timeout of its own. The pipeline bounds it with
asyncio.wait_for; on cancellation the subprocess is killed before the
cancellation propagates.
"""

import asyncio
import json
import os
import time
from typing import Any, Dict, List, Optional

import structlog

from src.mentionbot.config import BotSettings
from src.mentionbot.mcp.registry import McpServerConfig
from src.mentionbot.models import BotContext, ExecutionResult

logger = structlog.get_logger(__name__)


def parse_stream_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one stream-json line, ignoring anything that is not an object."""
    line = line.strip()
    if not line:
        return None
    try:
        message = json.loads(line)
    except json.JSONDecodeError:
        return None
    return message if isinstance(message, dict) else None


def result_from_message(
    message: Optional[Dict[str, Any]],
    exit_code: int,
    elapsed_ms: float,
) -> ExecutionResult:
    """Build an ExecutionResult from the final result message.

    Success requires both a zero exit code and a ``success`` subtype.
    Duration falls back to the measured wall-clock time.
    """
    if message is None:
        return ExecutionResult(success=False, duration_ms=elapsed_ms)

    return ExecutionResult(
        success=exit_code == 0 and message.get("subtype") == "success",
        duration_ms=message.get("duration_ms", elapsed_ms),
        cost_usd=message.get("total_cost_usd"),
        num_turns=message.get("num_turns"),
    )


class AgentExecutor:
    """Launches the agent CLI for one request.

    Attributes:
        executable: Agent CLI path or name on PATH.
        max_turns: Turn limit passed to the CLI.
        model: Optional model override.
        provider: "anthropic" or "bedrock".
    """

    def __init__(self, settings: BotSettings):
        self.executable = settings.claude_code_path
        self.max_turns = settings.agent_max_turns
        self.model = settings.claude_model
        self.provider = settings.claude_provider
        self.aws_region = settings.aws_region
        self.anthropic_api_key = settings.anthropic_api_key

    def build_command(
        self,
        mcp_servers: McpServerConfig,
        allowed_tools: List[str],
    ) -> List[str]:
        command = [
            self.executable,
            "-p",
            "--output-format",
            "stream-json",
            "--verbose",
            "--permission-mode",
            "bypassPermissions",
            "--max-turns",
            str(self.max_turns),
            "--allowedTools",
            ",".join(allowed_tools),
            "--mcp-config",
            json.dumps({"mcpServers": mcp_servers}),
        ]
        if self.model:
            command.extend(["--model", self.model])
        return command

    def build_env(self) -> Dict[str, str]:
        """Environment for the CLI, inheriting the server's environment.

        Bedrock credentials come from the inherited AWS variables.
        """
        env = dict(os.environ)
        if self.provider == "bedrock":
            env["CLAUDE_CODE_USE_BEDROCK"] = "1"
            if self.aws_region:
                env["AWS_REGION"] = self.aws_region
        elif self.anthropic_api_key:
            env["ANTHROPIC_API_KEY"] = self.anthropic_api_key
        return env

    async def run(
        self,
        ctx: BotContext,
        prompt: str,
        mcp_servers: McpServerConfig,
        work_dir: str,
        allowed_tools: List[str],
    ) -> ExecutionResult:
        """Run the agent to completion.

        Args:
            ctx: Request context.
            prompt: Full agent prompt.
            mcp_servers: Tool server definitions for this request.
            work_dir: Cloned repository the agent works in.
            allowed_tools: Tools the agent may use.

        Returns:
            ExecutionResult. A missing executable or a non-zero exit yields
            success=False rather than an exception.
        """
        log = ctx.log
        log.info(
            "Starting agent execution",
            work_dir=work_dir,
            mcp_server_count=len(mcp_servers),
            provider=self.provider,
        )
        start_time = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                *self.build_command(mcp_servers, allowed_tools),
                cwd=work_dir,
                env=self.build_env(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            log.error(
                "Failed to start agent CLI",
                executable=self.executable,
                error_type=type(e).__name__,
            )
            return ExecutionResult(success=False, duration_ms=self._elapsed_ms(start_time))

        try:
            result_message = await self._communicate(process, prompt, log)
        except BaseException:
            if process.returncode is None:
                process.kill()
                await process.wait()
            log.warning("Agent execution interrupted, process killed")
            raise

        exit_code = process.returncode if process.returncode is not None else -1
        result = result_from_message(result_message, exit_code, self._elapsed_ms(start_time))

        log.info(
            "Agent execution completed",
            success=result.success,
            exit_code=exit_code,
            duration_ms=result.duration_ms,
            cost_usd=result.cost_usd,
            num_turns=result.num_turns,
        )
        return result

    async def _communicate(
        self,
        process: asyncio.subprocess.Process,
        prompt: str,
        log: Any,
    ) -> Optional[Dict[str, Any]]:
        """Feed the prompt and read output until the process exits.

        Returns:
            The last result message seen on stdout, if any.
        """
        result_message: Optional[Dict[str, Any]] = None

        async def write_prompt() -> None:
            if process.stdin is None:
                return
            process.stdin.write(prompt.encode("utf-8"))
            await process.stdin.drain()
            process.stdin.close()

        async def read_stdout() -> None:
            nonlocal result_message
            async for line in _read_lines(process.stdout):
                message = parse_stream_line(line)
                if message is None:
                    continue
                if message.get("type") == "result":
                    result_message = message
                else:
                    log.debug("Agent message", message_type=message.get("type"))

        async def read_stderr() -> None:
            async for line in _read_lines(process.stderr):
                log.debug("Agent stderr", line=line[:500])

        await asyncio.gather(write_prompt(), read_stdout(), read_stderr())
        await process.wait()
        return result_message

    def _elapsed_ms(self, start_time: float) -> float:
        return (time.monotonic() - start_time) * 1000


async def _read_lines(stream: Optional[asyncio.StreamReader]):
    if stream is None:
        return
    while True:
        raw_line = await stream.readline()
        if not raw_line:
            break
        yield raw_line.decode("utf-8", errors="replace").rstrip("\n")
