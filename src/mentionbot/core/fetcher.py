"""Fetching pull request and issue data via the GitHub GraphQL API.

Connections are read with ``first: 100`` and no cursor pagination, so
very long threads are truncated.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from src.mentionbot.github.client import NotFoundError
from src.mentionbot.models import (
    BotContext,
    ChangedFileData,
    CommentData,
    FetchedData,
    ReviewCommentData,
)

_COMMENT_FIELDS = """
            id
            databaseId
            body
            author { login }
            createdAt
            updatedAt
            lastEditedAt
            isMinimized
"""

PR_QUERY = f"""
query($owner: String!, $repo: String!, $number: Int!) {{
  repository(owner: $owner, name: $repo) {{
    pullRequest(number: $number) {{
      title
      body
      author {{ login }}
      baseRefName
      headRefName
      headRefOid
      createdAt
      additions
      deletions
      state
      files(first: 100) {{
        nodes {{ path additions deletions changeType }}
      }}
      comments(first: 100) {{
        nodes {{{_COMMENT_FIELDS}        }}
      }}
      reviews(first: 100) {{
        nodes {{
          author {{ login }}
          state
          submittedAt
          comments(first: 100) {{
            nodes {{{_COMMENT_FIELDS}              path
              line
            }}
          }}
        }}
      }}
    }}
  }}
}}
"""

ISSUE_QUERY = f"""
query($owner: String!, $repo: String!, $number: Int!) {{
  repository(owner: $owner, name: $repo) {{
    issue(number: $number) {{
      title
      body
      author {{ login }}
      createdAt
      state
      comments(first: 100) {{
        nodes {{{_COMMENT_FIELDS}        }}
      }}
    }}
  }}
}}
"""


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def filter_by_trigger_time(
    items: Iterable[Dict[str, Any]],
    trigger_time: str,
) -> List[Dict[str, Any]]:
    """Keep GraphQL nodes created and last edited before the trigger.

    Content edited after the mention is excluded so that nobody can change
    what the agent reads between the trigger and the fetch.

    Args:
        items: Nodes with ``createdAt`` and optional ``lastEditedAt`` or
               ``updatedAt`` fields.
        trigger_time: ISO-8601 creation time of the trigger comment.

    Returns:
        The nodes written strictly before the trigger time.
    """
    trigger_ts = _parse_timestamp(trigger_time)
    kept = []
    for item in items:
        if _parse_timestamp(item["createdAt"]) >= trigger_ts:
            continue
        last_edit = item.get("lastEditedAt") or item.get("updatedAt")
        if last_edit and _parse_timestamp(last_edit) >= trigger_ts:
            continue
        kept.append(item)
    return kept


def _login(node: Dict[str, Any]) -> str:
    # Deleted accounts come back with a null author
    author = node.get("author") or {}
    return author.get("login") or "ghost"


def _visible(nodes: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [node for node in nodes if not node.get("isMinimized")]


def _nodes(connection: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return (connection or {}).get("nodes") or []


class DataFetcher:
    """Fetches the PR or issue a delivery refers to."""

    async def fetch(self, ctx: BotContext) -> FetchedData:
        """Fetch title, body, comments and, for PRs, files and branches.

        Raises:
            NotFoundError: If the PR or issue no longer exists.
            GitHubAPIError: If the query fails.
        """
        if ctx.is_pr:
            return await self._fetch_pull_request(ctx)
        return await self._fetch_issue(ctx)

    async def _query(self, ctx: BotContext, query: str) -> Dict[str, Any]:
        data = await ctx.github.graphql(
            query,
            {"owner": ctx.owner, "repo": ctx.repo, "number": ctx.entity_number},
        )
        return data.get("repository") or {}

    async def _fetch_pull_request(self, ctx: BotContext) -> FetchedData:
        repository = await self._query(ctx, PR_QUERY)
        pr = repository.get("pullRequest")
        if pr is None:
            raise NotFoundError(f"Pull request #{ctx.entity_number} not found")

        ctx.log.info("Fetched PR data via GraphQL")

        comments = filter_by_trigger_time(
            _visible(_nodes(pr.get("comments"))), ctx.trigger_timestamp
        )
        review_nodes = [
            comment
            for review in _nodes(pr.get("reviews"))
            for comment in _visible(_nodes(review.get("comments")))
        ]
        review_comments = filter_by_trigger_time(review_nodes, ctx.trigger_timestamp)

        return FetchedData(
            title=pr["title"],
            body=pr.get("body") or "",
            state=pr["state"],
            author=_login(pr),
            comments=[
                CommentData(author=_login(c), body=c.get("body") or "", created_at=c["createdAt"])
                for c in comments
            ],
            review_comments=[
                ReviewCommentData(
                    author=_login(c),
                    body=c.get("body") or "",
                    path=c["path"],
                    created_at=c["createdAt"],
                    line=c.get("line"),
                )
                for c in review_comments
            ],
            changed_files=[
                ChangedFileData(
                    filename=f["path"],
                    status=f["changeType"],
                    additions=f["additions"],
                    deletions=f["deletions"],
                )
                for f in _nodes(pr.get("files"))
            ],
            head_branch=pr.get("headRefName"),
            base_branch=pr.get("baseRefName"),
            head_sha=pr.get("headRefOid"),
        )

    async def _fetch_issue(self, ctx: BotContext) -> FetchedData:
        repository = await self._query(ctx, ISSUE_QUERY)
        issue = repository.get("issue")
        if issue is None:
            raise NotFoundError(f"Issue #{ctx.entity_number} not found")

        ctx.log.info("Fetched issue data via GraphQL")

        comments = filter_by_trigger_time(
            _visible(_nodes(issue.get("comments"))), ctx.trigger_timestamp
        )
        return FetchedData(
            title=issue["title"],
            body=issue.get("body") or "",
            state=issue["state"],
            author=_login(issue),
            comments=[
                CommentData(author=_login(c), body=c.get("body") or "", created_at=c["createdAt"])
                for c in comments
            ],
        )
