"""Data models shared across the request pipeline.

The request context is immutable: it is built once per webhook delivery
and read by every later step. Branch information resolved from fetched
data produces a new EnrichedBotContext rather than mutating the original.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

if TYPE_CHECKING:
    from src.mentionbot.github.client import GitHubClient


@dataclass(frozen=True, kw_only=True)
class BotContext:
    """Everything the pipeline needs to process one delivery.

    Attributes:
        owner: Repository owner (user or organization).
        repo: Repository name.
        entity_number: Issue or pull request number.
        is_pr: True when the entity is a pull request.
        event_name: Webhook event that produced this context.
        trigger_username: Login of the user who wrote the mention.
        trigger_timestamp: ISO-8601 creation time of the triggering comment.
        trigger_body: Full text of the triggering comment.
        comment_id: Identifier of the triggering comment.
        delivery_id: X-GitHub-Delivery identifier.
        default_branch: Repository default branch.
        head_branch: PR head branch when known from the payload.
        base_branch: PR base branch when known from the payload.
        github: API client authenticated as the app installation.
        log: Logger bound to this delivery.
    """

    owner: str
    repo: str
    entity_number: int
    is_pr: bool
    event_name: str
    trigger_username: str
    trigger_timestamp: str
    trigger_body: str
    comment_id: int
    delivery_id: str
    default_branch: str
    head_branch: Optional[str] = None
    base_branch: Optional[str] = None
    github: "GitHubClient" = field(repr=False, compare=False)
    log: Any = field(repr=False, compare=False)


@dataclass(frozen=True, kw_only=True)
class EnrichedBotContext(BotContext):
    """A BotContext whose branch fields are always resolved."""

    head_branch: str
    base_branch: str


@dataclass(frozen=True)
class CommentData:
    author: str
    body: str
    created_at: str


@dataclass(frozen=True)
class ReviewCommentData:
    author: str
    body: str
    path: str
    created_at: str
    line: Optional[int] = None


@dataclass(frozen=True)
class ChangedFileData:
    filename: str
    status: str
    additions: int
    deletions: int


@dataclass(frozen=True)
class FetchedData:
    """Issue or pull request data gathered before running the agent.

    Comments are limited to those written before the trigger comment.
    Review comments, changed files, branches and the head commit are only
    populated for pull requests.
    """

    title: str
    body: str
    state: str
    author: str
    comments: list[CommentData] = field(default_factory=list)
    review_comments: list[ReviewCommentData] = field(default_factory=list)
    changed_files: list[ChangedFileData] = field(default_factory=list)
    head_branch: Optional[str] = None
    base_branch: Optional[str] = None
    head_sha: Optional[str] = None


@dataclass
class ExecutionResult:
    """Outcome of one agent run.

    Attributes:
        success: True when the agent exited cleanly with a success result.
        duration_ms: Wall-clock duration reported by the agent.
        cost_usd: Total cost reported by the agent.
        num_turns: Number of agent turns taken.
    """

    success: bool
    duration_ms: Optional[float] = None
    cost_usd: Optional[float] = None
    num_turns: Optional[int] = None


@dataclass
class CheckoutResult:
    """A cloned working directory and the coroutine that removes it."""

    work_dir: str
    cleanup: Callable[[], Awaitable[None]]
