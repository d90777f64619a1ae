"""
Small text helpers shared by the parser, persona resolver and humanizer.
"""

import re

SLACK_USER_MENTION_RE = re.compile(r"<@[A-Z0-9]+>")
_WHITESPACE_RE = re.compile(r"\s+")
_PATH_SAFE_STRIP_RE = re.compile(r"[^\w\s./-]")
_AGGRESSIVE_STRIP_RE = re.compile(r"[^a-z0-9\s]")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]")


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def strip_slack_user_mentions(text: str) -> str:
    """Replace ``<@U123>`` mention tokens with a space."""
    return SLACK_USER_MENTION_RE.sub(" ", text)


def normalize_text(text: str, preserve_paths: bool = True) -> str:
    """
    Lower-case text and drop punctuation so fixed patterns can match it.

    Args:
        text: Raw message text.
        preserve_paths: Keep ``.``, ``/``, ``-`` and ``_`` so file paths and
            project names survive. When False only ``[a-z0-9]`` and
            whitespace remain.

    Returns:
        Normalized single-spaced text.
    """
    lowered = strip_slack_user_mentions(text).lower()
    if preserve_paths:
        lowered = _PATH_SAFE_STRIP_RE.sub(" ", lowered)
    else:
        lowered = _AGGRESSIVE_STRIP_RE.sub(" ", lowered)
    return collapse_whitespace(lowered)


def normalize_handle(value: str) -> str:
    """``"Dev-Bot"`` -> ``"devbot"``."""
    return _NON_ALNUM_RE.sub("", value.lower())


def normalize_project_ref(value: str) -> str:
    return _NON_ALNUM_RE.sub("", value.lower())
