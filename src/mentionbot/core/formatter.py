"""Formatting fetched GitHub data into prompt sections.

All user-authored text is sanitized here, so the prompt builder can embed
the returned strings as-is.
"""

from dataclasses import dataclass

from src.mentionbot.models import (
    ChangedFileData,
    CommentData,
    FetchedData,
    ReviewCommentData,
)
from src.mentionbot.utils.sanitize import sanitize_content


@dataclass(frozen=True)
class FormattedSections:
    context: str
    body: str
    comments: str
    review_comments: str
    changed_files: str


def format_context(data: FetchedData) -> str:
    """Format PR or issue metadata as a short block."""
    title = sanitize_content(data.title)

    if data.head_branch is not None:
        lines = [
            f"PR Title: {title}",
            f"PR Author: {data.author}",
            f"PR Branch: {data.head_branch} -> {data.base_branch}",
            f"PR State: {data.state}",
            f"Changed Files: {len(data.changed_files)} files",
        ]
    else:
        lines = [
            f"Issue Title: {title}",
            f"Issue Author: {data.author}",
            f"Issue State: {data.state}",
        ]
    return "\n".join(lines)


def format_body(body: str) -> str:
    if not body:
        return "No description provided"
    return sanitize_content(body)


def format_comments(comments: list[CommentData]) -> str:
    if not comments:
        return "No comments"
    return "\n\n".join(
        f"[{c.author} at {c.created_at}]: {sanitize_content(c.body)}"
        for c in comments
    )


def format_review_comments(review_comments: list[ReviewCommentData]) -> str:
    if not review_comments:
        return "No review comments"
    return "\n\n".join(
        f"[Comment on {c.path}:{c.line if c.line is not None else '?'}]: "
        f"{sanitize_content(c.body)}"
        for c in review_comments
    )


def format_changed_files(files: list[ChangedFileData]) -> str:
    if not files:
        return "No files changed"
    return "\n".join(
        f"- {f.filename} ({f.status}) +{f.additions}/-{f.deletions}" for f in files
    )


def format_all_sections(data: FetchedData, is_pr: bool) -> FormattedSections:
    """Format every section of fetched data.

    Review comments and changed files are empty strings for issues.
    """
    return FormattedSections(
        context=format_context(data),
        body=format_body(data.body),
        comments=format_comments(data.comments),
        review_comments=format_review_comments(data.review_comments) if is_pr else "",
        changed_files=format_changed_files(data.changed_files) if is_pr else "",
    )
