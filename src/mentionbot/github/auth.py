"""GitHub App authentication.

Signs short-lived RS256 app JWTs and exchanges them for installation access
tokens. Installation tokens live for one hour; they are cached per
installation and refreshed five minutes before they expire.
"""

import time
from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

import httpx
import jwt
import structlog

from src.mentionbot.github.client import GitHubAPIError

logger = structlog.get_logger(__name__)

# Refresh installation tokens this many seconds before GitHub expires them
TOKEN_REFRESH_MARGIN_SECONDS = 5 * 60


@dataclass
class _CachedToken:
    token: str
    expires_at: float


class GitHubAppAuth:
    """Issues installation tokens for a GitHub App.

    Attributes:
        app_id: GitHub App identifier, used as the JWT issuer.
        api_url: Base URL for the GitHub REST API.
    """

    def __init__(
        self,
        app_id: str,
        private_key: str,
        api_url: str = "https://api.github.com",
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.app_id = app_id
        self._private_key = private_key
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._clock = clock
        self._tokens: Dict[int, _CachedToken] = {}
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(base_url=self.api_url, timeout=self.timeout)
        return self._client

    def create_app_jwt(self) -> str:
        """Sign a JWT identifying the app.

        The issue time is backdated sixty seconds to absorb clock drift and
        the token expires after nine minutes, inside GitHub's ten minute cap.
        """
        now = int(self._clock())
        payload = {
            "iat": now - 60,
            "exp": now + 9 * 60,
            "iss": self.app_id,
        }
        return jwt.encode(payload, self._private_key, algorithm="RS256")

    async def installation_token(self, installation_id: int) -> str:
        """Return a valid installation access token.

        Args:
            installation_id: Installation the webhook was delivered for.

        Returns:
            A bearer token scoped to the installation.

        Raises:
            GitHubAPIError: If GitHub rejects the token exchange.
        """
        cached = self._tokens.get(installation_id)
        if cached is not None and self._clock() < cached.expires_at:
            return cached.token

        path = f"/app/installations/{installation_id}/access_tokens"
        try:
            response = await self.client.post(
                path,
                headers={
                    "Authorization": f"Bearer {self.create_app_jwt()}",
                    "Accept": "application/vnd.github+json",
                    "X-GitHub-Api-Version": "2022-11-28",
                },
            )
        except httpx.RequestError as e:
            raise GitHubAPIError(
                message=f"Installation token request failed: {type(e).__name__}",
                request_url=f"{self.api_url}{path}",
            ) from e

        if response.status_code >= 400:
            raise GitHubAPIError(
                message=f"Installation token request failed: {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
                request_url=str(response.url),
            )

        data = response.json()
        expires_at = self._parse_expiry(data.get("expires_at"))
        self._tokens[installation_id] = _CachedToken(
            token=data["token"],
            expires_at=expires_at - TOKEN_REFRESH_MARGIN_SECONDS,
        )

        logger.info("Issued installation token", installation_id=installation_id)
        return data["token"]

    def _parse_expiry(self, value: Optional[str]) -> float:
        """Parse GitHub's ISO-8601 expiry, assuming one hour when absent."""
        if value:
            try:
                return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
            except ValueError:
                logger.warning("Unparseable token expiry", expires_at=value)
        return self._clock() + 60 * 60

    def token_provider(self, installation_id: int) -> Callable[[], Awaitable[str]]:
        """Return a zero-argument coroutine function for one installation."""

        async def provide() -> str:
            return await self.installation_token(installation_id)

        return provide

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
