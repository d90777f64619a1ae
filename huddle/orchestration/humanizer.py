"""
Post-processing that makes model output read like a chat message.

Strips markdown scaffolding and assistant-style openers, drops repeated
sentences, enforces an emoji policy and trims length. It never rewrites
the substance of a reply.
"""

import math
import random
import re
import threading
from typing import Optional

from huddle.utils.text import collapse_whitespace, normalize_text

SKIP_SENTINEL = "SKIP"

_GENERIC_CONTINUATION = r"(?=(?:i|we|let|the|this|here|so)\b)"
CANNED_PHRASE_PREFIXES = [
    re.compile(rf"^great question[,.! ]+{_GENERIC_CONTINUATION}", re.IGNORECASE),
    re.compile(rf"^of course[,.! ]+{_GENERIC_CONTINUATION}", re.IGNORECASE),
    re.compile(rf"^certainly[,.! ]+{_GENERIC_CONTINUATION}", re.IGNORECASE),
    re.compile(r"^you['’]re absolutely right[,.! ]+", re.IGNORECASE),
    re.compile(r"^i hope this helps[,.! ]*", re.IGNORECASE),
]

# Pictographic blocks plus an optional variation selector
EMOJI_RE = re.compile(
    "(?:[⌀-⏿☀-➿⬀-⯿"
    "\U0001f000-\U0001faff])️?"
)
_FACIAL_EMOJI_RE = re.compile("[\U0001f600-\U0001f64f\U0001f910-\U0001f92f\U0001f970-\U0001f97a]")

_HEADING_RE = re.compile(r"^#{1,6}\s+", re.MULTILINE)
_BULLET_RE = re.compile(r"^\s*[-*]\s+", re.MULTILINE)
_BOLD_RE = re.compile(r"\*\*(.*?)\*\*")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")


def is_skip_message(text: str) -> bool:
    return text.strip().upper() == SKIP_SENTINEL


def _split_sentences(text: str) -> list[str]:
    return [part.strip() for part in _SENTENCE_SPLIT_RE.split(text) if part.strip()]


def dedupe_repeated_sentences(text: str) -> str:
    parts = _split_sentences(text)
    if len(parts) <= 1:
        return text

    unique: list[str] = []
    seen: set[str] = set()
    for part in parts:
        key = normalize_text(part, preserve_paths=False)
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(part)
    return " ".join(unique)


def is_facial_emoji(char: str) -> bool:
    return bool(_FACIAL_EMOJI_RE.search(char))


def limit_emoji_count(text: str, max_emojis: int) -> str:
    """Keep the first ``max_emojis`` emoji, drop the rest."""
    seen = 0

    def _keep_first(match: re.Match) -> str:
        nonlocal seen
        seen += 1
        return match.group(0) if seen <= max_emojis else ""

    return EMOJI_RE.sub(_keep_first, text)


def apply_emoji_policy(text: str, allow_emoji: bool, allow_non_facial_emoji: bool) -> str:
    """
    Strip every emoji, or keep exactly one.

    A facial emoji is preferred; a non-facial one survives only when
    ``allow_non_facial_emoji`` is set.
    """
    if not allow_emoji:
        return EMOJI_RE.sub("", text)

    emojis = EMOJI_RE.findall(text)
    if not emojis:
        return text

    chosen = next((e for e in emojis if is_facial_emoji(e)), None)
    if chosen is None and allow_non_facial_emoji:
        chosen = emojis[0]
    if chosen is None:
        return EMOJI_RE.sub("", text)

    kept = False

    def _keep_chosen(match: re.Match) -> str:
        nonlocal kept
        if not kept and match.group(0) == chosen:
            kept = True
            return match.group(0)
        return ""

    return EMOJI_RE.sub(_keep_chosen, text)


def trim_to_sentences(text: str, max_sentences: float) -> str:
    parts = _split_sentences(text)
    if len(parts) <= max_sentences:
        return text.strip()
    return " ".join(parts[: int(max_sentences)]).strip()


def humanize_reply(
    raw: str,
    allow_emoji: bool = True,
    allow_non_facial_emoji: bool = True,
    max_sentences: float = math.inf,
    max_chars: float = math.inf,
) -> str:
    """
    Make a model reply read like a teammate's chat message.

    Args:
        raw: Model output.
        allow_emoji: Keep at most one emoji instead of stripping all.
        allow_non_facial_emoji: Allow a non-facial emoji when no facial one exists.
        max_sentences: Sentence cap.
        max_chars: Character cap; longer text ends in "...".

    Returns:
        The cleaned text, or ``"SKIP"`` for the skip sentinel.
    """
    text = raw.strip()
    if not text:
        return text
    if is_skip_message(text):
        return SKIP_SENTINEL

    text = _HEADING_RE.sub("", text)
    text = _BULLET_RE.sub("", text)
    text = _BOLD_RE.sub(r"\1", text)
    text = collapse_whitespace(text)

    for pattern in CANNED_PHRASE_PREFIXES:
        text = pattern.sub("", text).strip()

    text = dedupe_repeated_sentences(text)
    text = apply_emoji_policy(text, allow_emoji, allow_non_facial_emoji)
    text = limit_emoji_count(text, 1)
    text = trim_to_sentences(text, max_sentences)

    if len(text) > max_chars:
        text = f"{text[: int(max_chars) - 3].rstrip()}..."
    return text


class HumanizerCadence:
    """
    Varies reply shape per speaker so a thread does not look templated.

    Each key (usually ``channel:thread:persona``) counts its posts. Emoji
    is allowed on every third post and non-facial emoji on every ninth.
    Sentence count and length are drawn at random.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self._counts: dict[str, int] = {}
        self._lock = threading.Lock()

    def humanize_for_post(self, key: str, raw: str) -> str:
        with self._lock:
            count = self._counts.get(key, 0) + 1
            self._counts[key] = count

        roll = self._rng.random()
        if roll < 0.35:
            max_sentences = 1
        elif roll < 0.6:
            max_sentences = 2
        else:
            max_sentences = 3

        return humanize_reply(
            raw,
            allow_emoji=count % 3 == 0,
            allow_non_facial_emoji=count % 9 == 0,
            max_sentences=max_sentences,
            max_chars=280 + self._rng.randint(0, 160),
        )
