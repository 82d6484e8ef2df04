"""Repository checkout into an isolated working directory.

Each delivery gets a fresh shallow clone under the configured base path so
the agent's file tools operate on real files. The installation token is
handed to git through a credential helper script (mode 0700) written
beside the working directory, which keeps it out of the process table.
"""

import asyncio
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional

import structlog

from src.mentionbot.config import BotSettings
from src.mentionbot.models import BotContext, CheckoutResult

logger = structlog.get_logger(__name__)

CREDENTIAL_HELPER_SUFFIX = ".cred.sh"
CREDENTIAL_HELPER_PERMISSIONS = 0o700
GIT_COMMAND_TIMEOUT_SECONDS = 300


class CheckoutError(Exception):
    """Raised when cloning or configuring a repository fails."""

    def __init__(self, message: str, returncode: Optional[int] = None):
        self.returncode = returncode
        super().__init__(message)


def git_host_url(api_url: str) -> str:
    """Derive the git host from the REST API URL.

    ``https://api.github.com`` maps to ``https://github.com`` and GitHub
    Enterprise Server's ``https://host/api/v3`` maps to ``https://host``.
    """
    api_url = api_url.rstrip("/")
    if api_url == "https://api.github.com":
        return "https://github.com"
    if api_url.endswith("/api/v3"):
        return api_url[: -len("/api/v3")]
    return api_url


def sweep_stale_credential_helpers(base_dir: str, max_age_seconds: float = 3600) -> int:
    """Delete credential helper scripts left behind by a crashed process.

    Returns:
        Number of files removed.
    """
    base = Path(base_dir)
    if not base.is_dir():
        return 0

    cutoff = time.time() - max_age_seconds
    removed = 0
    for helper in base.glob(f"*{CREDENTIAL_HELPER_SUFFIX}"):
        try:
            if helper.stat().st_mtime < cutoff:
                helper.unlink()
                removed += 1
        except FileNotFoundError:
            continue
        except OSError:
            logger.exception("Failed to remove stale credential helper", path=str(helper))

    if removed:
        logger.info("Removed stale credential helpers", removed=removed)
    return removed


class RepositoryCheckout:
    """Clones repositories for agent runs.

    Attributes:
        base_dir: Directory holding all working directories.
        depth: Shallow clone depth.
        git_url: Host the repositories are cloned from.
        bot_name: Git author name for agent commits.
        bot_email: Git author email for agent commits.
    """

    def __init__(self, settings: BotSettings, git_executable: str = "git"):
        self.base_dir = settings.clone_base_dir
        self.depth = settings.clone_depth
        self.git_url = git_host_url(settings.github_api_url)
        self.git_executable = git_executable
        self.bot_name = f"{settings.trigger_phrase.lstrip('@')}[bot]"
        self.bot_email = f"{settings.github_app_id}+{self.bot_name}@users.noreply.github.com"

    async def checkout(self, ctx: BotContext, token: str) -> CheckoutResult:
        """Clone the repository for a request.

        Pull requests check out the head branch; issues the default branch.

        Args:
            ctx: Enriched request context.
            token: Installation access token.

        Returns:
            CheckoutResult with the working directory and its cleanup
            coroutine.

        Raises:
            CheckoutError: If there is no branch to check out or git fails.
                           Partially created files are removed first.
        """
        os.makedirs(self.base_dir, exist_ok=True)
        work_dir = tempfile.mkdtemp(prefix=f"{ctx.delivery_id}-", dir=self.base_dir)
        helper_path = f"{work_dir}{CREDENTIAL_HELPER_SUFFIX}"
        log = ctx.log.bind(work_dir=work_dir)

        try:
            branch = ctx.head_branch if ctx.is_pr else ctx.default_branch
            if not branch:
                raise CheckoutError("No branch available for checkout")

            self._write_credential_helper(helper_path, token)

            log.info("Cloning repository", branch=branch, depth=self.depth)
            await self._git(
                "clone",
                f"--depth={self.depth}",
                f"--branch={branch}",
                "--single-branch",
                "-c",
                f"credential.helper={helper_path}",
                f"{self.git_url}/{ctx.owner}/{ctx.repo}.git",
                work_dir,
            )
            await self._git("-C", work_dir, "config", "credential.helper", helper_path)
            await self._git("-C", work_dir, "config", "user.name", self.bot_name)
            await self._git("-C", work_dir, "config", "user.email", self.bot_email)
            log.info("Repository checked out and git configured")
        except BaseException:
            _remove_paths(work_dir, helper_path)
            raise

        cleaned = False

        async def cleanup() -> None:
            nonlocal cleaned
            if cleaned:
                return
            cleaned = True
            log.info("Cleaning up workspace")
            await asyncio.to_thread(_remove_paths, work_dir, helper_path, True)

        return CheckoutResult(work_dir=work_dir, cleanup=cleanup)

    def _write_credential_helper(self, helper_path: str, token: str) -> None:
        script = (
            "#!/bin/sh\n"
            f"printf 'username=x-access-token\\npassword={token}\\n'\n"
        )
        flags = os.O_WRONLY | os.O_CREAT | os.O_TRUNC
        fd = os.open(helper_path, flags, CREDENTIAL_HELPER_PERMISSIONS)
        with os.fdopen(fd, "w") as helper:
            helper.write(script)
        os.chmod(helper_path, CREDENTIAL_HELPER_PERMISSIONS)

    async def _git(self, *args: str) -> None:
        """Run one git command, raising CheckoutError on failure.

        Error messages carry only the git subcommand and exit code; git's
        stderr is logged at debug level since it can include URLs.
        """
        env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
        subcommand = next((a for a in args if not a.startswith("-") and "/" not in a), "git")
        try:
            process = await asyncio.create_subprocess_exec(
                self.git_executable,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
            )
        except OSError as e:
            raise CheckoutError(f"Failed to execute git: {type(e).__name__}") from e

        try:
            _, stderr = await asyncio.wait_for(
                process.communicate(), timeout=GIT_COMMAND_TIMEOUT_SECONDS
            )
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise CheckoutError(
                f"git {subcommand} timed out after {GIT_COMMAND_TIMEOUT_SECONDS}s"
            ) from e

        if process.returncode != 0:
            logger.debug(
                "git command failed",
                subcommand=subcommand,
                returncode=process.returncode,
                stderr=stderr.decode(errors="replace").strip()[:500],
            )
            raise CheckoutError(
                f"git {subcommand} failed with exit code {process.returncode}",
                returncode=process.returncode,
            )


def _remove_paths(work_dir: str, helper_path: str, strict: bool = False) -> None:
    """Remove a credential helper and its working directory.

    With strict=False errors are logged and ignored, which is used while
    unwinding a failed checkout so the original error propagates.
    """
    try:
        os.remove(helper_path)
    except FileNotFoundError:
        pass
    except OSError:
        if strict:
            raise
        logger.exception("Failed to remove credential helper", path=helper_path)

    try:
        shutil.rmtree(work_dir)
    except FileNotFoundError:
        pass
    except OSError:
        if strict:
            raise
        logger.exception("Failed to remove working directory", work_dir=work_dir)
