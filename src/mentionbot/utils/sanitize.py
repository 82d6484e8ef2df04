"""Content sanitization for user-authored GitHub text.

Every string that originates from a GitHub user (titles, bodies, comments,
review comments) passes through sanitize_content before it reaches the
agent prompt or a comment written by the bot. The filters remove common
prompt-injection carriers and redact GitHub credentials.
"""

import re

REDACTED_TOKEN = "[REDACTED_GITHUB_TOKEN]"

_ZERO_WIDTH = re.compile("[\u200b\u200c\u200d\ufeff]")
_CONTROL_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_SOFT_HYPHEN = re.compile("\u00ad")
_BIDI_OVERRIDES = re.compile("[\u202a-\u202e\u2066-\u2069]")

_HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
_IMAGE_ALT_TEXT = re.compile(r"!\[[^\]]*\]\(")
_LINK_TITLE_DOUBLE = re.compile(r'(\[[^\]]*\]\([^)]+)\s+"[^"]*"')
_LINK_TITLE_SINGLE = re.compile(r"(\[[^\]]*\]\([^)]+)\s+'[^']*'")

_HIDDEN_ATTRIBUTES = [
    re.compile(rf"\s{name}\s*=\s*{value}", re.IGNORECASE)
    for name in ("alt", "title", "aria-label", r"data-[a-zA-Z0-9-]+", "placeholder")
    for value in (r"[\"'][^\"']*[\"']", r"[^\s>]+")
]

_DECIMAL_ENTITY = re.compile(r"&#(\d+);")
_HEX_ENTITY = re.compile(r"&#x([0-9a-fA-F]+);")

_GITHUB_TOKENS = [
    re.compile(r"\bghp_[A-Za-z0-9]{36}\b"),  # classic personal access token
    re.compile(r"\bgho_[A-Za-z0-9]{36}\b"),  # OAuth
    re.compile(r"\bghs_[A-Za-z0-9]{36}\b"),  # installation
    re.compile(r"\bghr_[A-Za-z0-9]{36}\b"),  # refresh
    re.compile(r"\bgithub_pat_[A-Za-z0-9_]{11,221}\b"),  # fine-grained
]


def strip_html_comments(content: str) -> str:
    return _HTML_COMMENT.sub("", content)


def strip_invisible_characters(content: str) -> str:
    """Remove zero-width, control, soft hyphen and bidi override characters.

    Tab, newline and carriage return are kept.
    """
    for pattern in (_ZERO_WIDTH, _CONTROL_CHARS, _SOFT_HYPHEN, _BIDI_OVERRIDES):
        content = pattern.sub("", content)
    return content


def strip_markdown_image_alt_text(content: str) -> str:
    return _IMAGE_ALT_TEXT.sub("![](", content)


def strip_markdown_link_titles(content: str) -> str:
    content = _LINK_TITLE_DOUBLE.sub(r"\1", content)
    return _LINK_TITLE_SINGLE.sub(r"\1", content)


def strip_hidden_attributes(content: str) -> str:
    """Remove HTML attributes that render invisibly but carry text."""
    for pattern in _HIDDEN_ATTRIBUTES:
        content = pattern.sub("", content)
    return content


def _printable_or_empty(code: int) -> str:
    if 32 <= code <= 126:
        return chr(code)
    return ""


def normalize_html_entities(content: str) -> str:
    """Decode numeric entities for printable ASCII and drop all others."""
    content = _DECIMAL_ENTITY.sub(lambda m: _printable_or_empty(int(m.group(1))), content)
    return _HEX_ENTITY.sub(lambda m: _printable_or_empty(int(m.group(1), 16)), content)


def redact_github_tokens(content: str) -> str:
    for pattern in _GITHUB_TOKENS:
        content = pattern.sub(REDACTED_TOKEN, content)
    return content


def sanitize_content(content: str) -> str:
    """Apply every sanitization filter in order.

    Args:
        content: Raw user-authored text.

    Returns:
        Text safe to embed in a prompt or comment.
    """
    content = strip_html_comments(content)
    content = strip_invisible_characters(content)
    content = strip_markdown_image_alt_text(content)
    content = strip_markdown_link_titles(content)
    content = strip_hidden_attributes(content)
    content = normalize_html_entities(content)
    return redact_github_tokens(content)
