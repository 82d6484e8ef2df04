"""GitHub API client for comment and pull request interactions.

This module provides an async wrapper around the GitHub REST and GraphQL
APIs for:
- Listing, creating, reading and updating issue comments
- Reading pull requests and creating inline review comments
- Running GraphQL queries

Every call is a single attempt. Callers that can safely repeat a call wrap
it in retry_with_backoff, which relies on the ``status_code`` carried by
GitHubAPIError to tell permanent failures from transient ones.
"""

import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog

logger = structlog.get_logger(__name__)


class GitHubAPIError(Exception):
    """Raised when a GitHub API request fails.

    Attributes:
        message: Human-readable error description.
        status_code: HTTP status code from the response. None for transport
                     failures and GraphQL errors, which are treated as
                     transient.
        response_body: Response body from GitHub API.
        request_url: The URL that was requested.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """Raised when GitHub API rate limit is exceeded.

    Always carries status 429, including for GitHub's 403 responses with an
    exhausted quota, so retry logic treats it as transient.

    Attributes:
        reset_at: Unix timestamp when the rate limit resets.
        retry_after: Seconds to wait before retrying.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        kwargs["status_code"] = 429
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


class NotFoundError(GitHubAPIError):
    """Raised when a requested issue or pull request does not exist."""

    def __init__(self, message: str, **kwargs: Any):
        kwargs["status_code"] = 404
        super().__init__(message, **kwargs)


TokenProvider = Callable[[], Awaitable[str]]


class GitHubClient:
    """Async GitHub API client scoped to one app installation.

    Attributes:
        base_url: Base URL for GitHub API (default: https://api.github.com).
        timeout: Request timeout in seconds.

    Example:
        >>> client = GitHubClient(token_provider=auth.token_provider(42))
        >>> async with client:
        ...     await client.create_issue_comment("owner", "repo", 123, "Hello!")
    """

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: str = "https://api.github.com",
        timeout: float = 30.0,
    ):
        """Initialize the GitHub client.

        Args:
            token_provider: Coroutine function returning a bearer token.
                            Called before each request so rotated tokens
                            are picked up.
            base_url: Base URL for GitHub API. Use this to support
                      GitHub Enterprise Server endpoints.
            timeout: Request timeout in seconds.
        """
        self._token_provider = token_provider
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get the HTTP client, creating it if necessary."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "github-mention-bot/1.0",
        }

    @property
    def graphql_url(self) -> str:
        """GraphQL endpoint; Enterprise Server serves it under /api/graphql."""
        if self.base_url.endswith("/api/v3"):
            return self.base_url[: -len("/v3")] + "/graphql"
        return f"{self.base_url}/graphql"

    async def installation_token(self) -> str:
        """Return the short-lived installation token this client uses."""
        return await self._token_provider()

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _raise_for_rate_limit(self, response: httpx.Response) -> None:
        """Raise RateLimitError for 429s and quota-exhausted 403s."""
        remaining = response.headers.get("x-ratelimit-remaining")
        exhausted = response.status_code == 403 and remaining == "0"
        if response.status_code != 429 and not exhausted:
            return

        reset_at = None
        retry_after = None
        reset_header = response.headers.get("x-ratelimit-reset")
        if reset_header and reset_header.isdigit():
            reset_at = int(reset_header)
            retry_after = max(0, reset_at - int(time.time()))
        retry_after_header = response.headers.get("retry-after")
        if retry_after_header and retry_after_header.isdigit():
            retry_after = int(retry_after_header)

        logger.warning(
            "GitHub API rate limit exceeded",
            reset_at=reset_at,
            retry_after=retry_after,
        )
        raise RateLimitError(
            message="GitHub API rate limit exceeded",
            reset_at=reset_at,
            retry_after=retry_after,
            request_url=str(response.url),
        )

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Make a single authenticated HTTP request.

        Args:
            method: HTTP method (GET, POST, PATCH).
            path: API path or absolute URL.
            json_data: Optional JSON body for the request.
            params: Optional query string parameters.

        Returns:
            The successful HTTP response.

        Raises:
            RateLimitError: If rate limit is exceeded.
            GitHubAPIError: For any other failure.
        """
        token = await self._token_provider()
        try:
            response = await self.client.request(
                method=method,
                url=path,
                json=json_data,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.RequestError as e:
            logger.warning(
                "GitHub API request error",
                method=method,
                path=path,
                error_type=type(e).__name__,
            )
            raise GitHubAPIError(
                message=f"GitHub API request error: {type(e).__name__}",
                request_url=path,
            ) from e

        self._raise_for_rate_limit(response)

        if response.status_code >= 400:
            error_body = response.text
            logger.error(
                "GitHub API error",
                status_code=response.status_code,
                method=method,
                path=path,
                response_body=error_body[:500],
            )
            raise GitHubAPIError(
                message=f"GitHub API error: {response.status_code}",
                status_code=response.status_code,
                response_body=error_body,
                request_url=str(response.url),
            )

        return response

    async def list_issue_comments(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        since: Optional[str] = None,
        per_page: int = 100,
    ) -> List[Dict[str, Any]]:
        """List all comments on an issue or pull request, oldest first.

        The endpoint only supports ``since``, ``per_page`` and ``page``;
        pages are followed through the ``Link: rel="next"`` header until
        the listing is exhausted.

        Args:
            owner: Repository owner (user or organization).
            repo: Repository name.
            issue_number: Issue or PR number.
            since: ISO-8601 timestamp; only comments updated at or after it
                   are returned.
            per_page: Page size, at most 100.

        Returns:
            Comment objects from the GitHub API.
        """
        params: Optional[Dict[str, Any]] = {"per_page": per_page}
        if since:
            params["since"] = since

        url = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"
        comments: List[Dict[str, Any]] = []
        while url:
            response = await self._request("GET", url, params=params)
            comments.extend(response.json())
            # The next link already carries the query string
            url = response.links.get("next", {}).get("url")
            params = None
        return comments

    async def create_issue_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
    ) -> Dict[str, Any]:
        """Create a comment on an issue or pull request.

        Returns:
            The created comment data, including its ``id``.
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"
        response = await self._request("POST", path, json_data={"body": body})
        result = response.json()
        logger.info(
            "Comment created",
            owner=owner,
            repo=repo,
            issue_number=issue_number,
            comment_id=result.get("id"),
        )
        return result

    async def update_issue_comment(
        self,
        owner: str,
        repo: str,
        comment_id: int,
        body: str,
    ) -> Dict[str, Any]:
        """Overwrite the body of an existing issue comment."""
        path = f"/repos/{owner}/{repo}/issues/comments/{comment_id}"
        response = await self._request("PATCH", path, json_data={"body": body})
        return response.json()

    async def get_issue_comment(
        self,
        owner: str,
        repo: str,
        comment_id: int,
    ) -> Dict[str, Any]:
        path = f"/repos/{owner}/{repo}/issues/comments/{comment_id}"
        response = await self._request("GET", path)
        return response.json()

    async def get_pull_request(
        self,
        owner: str,
        repo: str,
        pr_number: int,
    ) -> Dict[str, Any]:
        path = f"/repos/{owner}/{repo}/pulls/{pr_number}"
        response = await self._request("GET", path)
        return response.json()

    async def create_review_comment(
        self,
        owner: str,
        repo: str,
        pr_number: int,
        body: str,
        path: str,
        commit_id: str,
        line: int,
        start_line: Optional[int] = None,
        side: str = "RIGHT",
    ) -> Dict[str, Any]:
        """Create an inline review comment on a pull request diff.

        Args:
            body: Comment text in markdown.
            path: File path relative to the repository root.
            commit_id: Head commit the comment applies to.
            line: Last line of the commented range.
            start_line: First line of a multi-line range.
            side: "RIGHT" for the new version, "LEFT" for the old one.
        """
        payload: Dict[str, Any] = {
            "body": body,
            "path": path,
            "commit_id": commit_id,
            "line": line,
            "side": side,
        }
        if start_line is not None and start_line != line:
            payload["start_line"] = start_line
            payload["start_side"] = side

        response = await self._request(
            "POST",
            f"/repos/{owner}/{repo}/pulls/{pr_number}/comments",
            json_data=payload,
        )
        return response.json()

    async def graphql(
        self,
        query: str,
        variables: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Run a GraphQL query and return its ``data`` object.

        Raises:
            GitHubAPIError: On HTTP failure, or without a status code when
                            the response carries GraphQL ``errors``.
        """
        response = await self._request(
            "POST",
            self.graphql_url,
            json_data={"query": query, "variables": variables or {}},
        )
        payload = response.json()
        if payload.get("errors"):
            messages = [err.get("message", "") for err in payload["errors"]]
            logger.error("GraphQL query returned errors", errors=messages[:5])
            raise GitHubAPIError(
                message="GraphQL query returned errors",
                response_body=str(messages),
                request_url=self.graphql_url,
            )
        return payload.get("data") or {}
