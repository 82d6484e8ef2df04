"""Trigger phrase detection in comment bodies."""

import re
from functools import lru_cache
from typing import Pattern


@lru_cache(maxsize=8)
def _trigger_pattern(phrase: str) -> Pattern[str]:
    return re.compile(rf"(^|\s){re.escape(phrase)}([\s.,!?;:]|$)")


def contains_trigger(body: str, phrase: str) -> bool:
    """Check whether a comment mentions the bot.

    The phrase must start the text or follow whitespace, and must end the
    text or be followed by whitespace or punctuation. This rejects longer
    handles such as "@mention-bot2" and e-mail addresses.

    Args:
        body: Comment text.
        phrase: Trigger phrase, matched literally.

    Returns:
        True if the phrase appears as a standalone mention.
    """
    if not body:
        return False
    return _trigger_pattern(phrase).search(body) is not None
