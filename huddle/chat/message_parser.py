"""
Message parsing for inbound chat events.

The command grammar here is fixed: every pattern is part of the contract and
must match literally, including the stopword list. Nothing in this module
performs I/O or keeps state.

Recognized intents:
  - job requests:       "run yarn verify on night-watch-cli project", "review #42"
  - provider requests:  "claude fix the flaky tests", "run codex on api: ..."
  - issue pickups:      "pick up https://github.com/o/r/issues/7"
  - issue reviewables:  any direct GitHub issue link
"""

import re
from typing import Any, Mapping, Optional

from huddle.models.chat import (
    ChatProvider,
    InboundEvent,
    IssuePickupRequest,
    IssueReviewable,
    JobName,
    JobRequest,
    ProviderRequest,
)
from huddle.utils.text import normalize_text, strip_slack_user_mentions

JOB_STOPWORDS = frozenset({
    "and", "or", "for", "on", "of", "please", "now", "it", "this", "these",
    "those", "the", "a", "an", "pr", "pull", "that", "thanks", "thank",
    "again", "job", "pipeline",
})

# ======================
# Patterns
# ======================
_WS_RE = re.compile(r"\s+")
_GREETING_RE = re.compile(r"^(hey|hi|hello|yo|sup)\b")
_TEAM_WORD_RE = re.compile(r"\b(guys|team|everyone|folks)\b")

_PR_URL_RE = re.compile(
    r"https?://github\.com/([^/\s]+)/([^/\s]+)/pull/(\d+)", re.IGNORECASE
)
_PR_PATH_RE = re.compile(r"/pull/(\d+)(?:[/?#]|$)", re.IGNORECASE)
# "#42" may be followed by trailing punctuation ("look at #42, ...")
_PR_HASH_RE = re.compile(r"(?:^|\s)#(\d+)(?=[\s.,;:!?)]|$)")
_CONFLICT_SIGNAL_RE = re.compile(
    r"\b(conflict|conflicts|merge conflict|merge issues?|rebase)\b", re.IGNORECASE
)
_JOB_REQUEST_SIGNAL_RE = re.compile(
    r"\b(can someone|someone|anyone|please|need|look at|take a look|fix|review|check)\b",
    re.IGNORECASE,
)
_JOB_KEYWORD_RE = re.compile(
    r"\b(run|review|qa)\b(?:\s+(?:for|on)?\s*([a-z0-9./_-]+))?", re.IGNORECASE
)
_ON_FOR_HINT_RE = re.compile(
    r"\b(?:on|for)\s+([a-z0-9][a-z0-9._/-]*)\s*(?:project|repo|codebase|branch)?\b"
)

_DIRECT_ISSUE_RE = re.compile(
    r"https?://github\.com/([^/\s<>]+)/([^/\s<>]+)/issues/(\d+)", re.IGNORECASE
)
_BOARD_ISSUE_RE = re.compile(
    r"https?://github\.com/[^<>\s]*[?&]issue=([^<>\s&]+)", re.IGNORECASE
)
_ENCODED_PIPE_RE = re.compile(r"%7c", re.IGNORECASE)
_PICKUP_SIGNAL_RE = re.compile(
    r"\b(pick\s+up|pickup|work\s+on|implement|tackle|start\s+on|grab|handle\s+this|ship\s+this)\b",
    re.IGNORECASE,
)
_PICKUP_REQUEST_RE = re.compile(r"\b(please|can\s+someone|anyone)\b", re.IGNORECASE)
_THIS_ISSUE_RE = re.compile(r"\bthis\s+issue\b", re.IGNORECASE)

_PROVIDER_PREFIX_RE = re.compile(
    r"^\s*(?:can\s+(?:you|someone|anyone)\s+)?(?:please\s+)?"
    r"(?:(?:run|use|invoke|trigger|ask)\s+)?(claude|codex)\b[\s:,-]*",
    re.IGNORECASE,
)
_PROVIDER_PROJECT_RE = re.compile(r"^(?:for|on)\s+([a-z0-9./_-]+)\b[\s:,-]*", re.IGNORECASE)

_GITHUB_URL_RE = re.compile(r"https?://github\.com/[^\s<>]+")
_GITHUB_ISSUE_OR_PR_PATH_RE = re.compile(r"/(issues|pull)/\d+")
_BRACKET_URL_RE = re.compile(r"<(https?://[^|>\s]+)(?:\|[^>]*)?>")
_PLAIN_URL_RE = re.compile(r"https?://[^\s<>|]+")


class MessageParser:
    """
    Stateless parser for inbound chat text and event payloads.
    """

    def normalize_for_parsing(self, text: str) -> str:
        """Lower-case, drop mention tokens and punctuation, keep path characters."""
        return normalize_text(text, preserve_paths=True)

    def extract_inbound_event(self, payload: Mapping[str, Any]) -> Optional[InboundEvent]:
        """
        Unwrap the event from an Events API payload.

        The event may sit under ``event``, ``body.event`` or ``payload.event``;
        the first one present wins.
        """
        candidates = (
            payload.get("event"),
            (payload.get("body") or {}).get("event"),
            (payload.get("payload") or {}).get("event"),
        )
        for candidate in candidates:
            if candidate is None:
                continue
            if isinstance(candidate, InboundEvent):
                return candidate
            return InboundEvent.model_validate(candidate)
        return None

    def build_inbound_message_key(self, channel: str, ts: str, event_type: Optional[str]) -> str:
        return f"{channel}:{ts}:{event_type or 'message'}"

    def is_ambient_team_message(self, text: str) -> bool:
        """True for greetings aimed at the whole team ("hey guys", "morning all")."""
        normalized = self.normalize_for_parsing(text)
        if not normalized or not _GREETING_RE.search(normalized):
            return False
        if _TEAM_WORD_RE.search(normalized):
            return True
        return len(normalized.split(" ")) <= 6

    def should_ignore_inbound_slack_event(
        self, event: InboundEvent, bot_user_id: Optional[str]
    ) -> bool:
        """
        The gate every event passes before further processing.

        Each condition is checked independently: missing channel or ts,
        missing user, any subtype, any bot id, or the bot's own user id.
        """
        if not event.channel or not event.ts:
            return True
        if not event.user:
            return True
        if event.subtype:
            return True
        if event.bot_id:
            return True
        if bot_user_id and event.user == bot_user_id:
            return True
        return False

    # ======================
    # Intent parsing
    # ======================

    def parse_slack_job_request(self, text: str) -> Optional[JobRequest]:
        """
        Recognize ``run``/``review``/``qa`` requests.

        An explicit job keyword wins. Without one, a PR reference plus request
        language (or any conflict language) is read as a ``review``.

        Returns:
            JobRequest, or None when neither a keyword nor a PR reference is present.
        """
        without_mentions = strip_slack_user_mentions(text)
        normalized = self.normalize_for_parsing(without_mentions)
        if not normalized:
            return None

        # Copied URLs are often split across lines
        compact = _WS_RE.sub("", without_mentions)
        pr_url_match = _PR_URL_RE.search(compact)
        pr_path_match = _PR_PATH_RE.search(compact)
        pr_hash_match = _PR_HASH_RE.search(without_mentions)
        conflict_signal = bool(_CONFLICT_SIGNAL_RE.search(normalized))
        request_signal = bool(_JOB_REQUEST_SIGNAL_RE.search(normalized))

        match = _JOB_KEYWORD_RE.search(normalized)
        if not match and not pr_url_match and not pr_hash_match:
            return None

        pr_number = (
            (pr_url_match and pr_url_match.group(3))
            or (pr_path_match and pr_path_match.group(1))
            or (pr_hash_match and pr_hash_match.group(1))
            or None
        )

        if match:
            job = JobName(match.group(1).lower())
        elif conflict_signal or (pr_number and request_signal):
            job = JobName.REVIEW
        else:
            return None

        on_for_match = _ON_FOR_HINT_RE.search(normalized)
        on_for_hint = on_for_match.group(1) if on_for_match else None
        keyword_hint = match.group(2).lower() if match and match.group(2) else None
        url_repo_hint = pr_url_match.group(2).lower() if pr_url_match else None

        project_hint = next(
            (
                candidate
                for candidate in (on_for_hint, keyword_hint, url_repo_hint)
                if candidate and candidate not in JOB_STOPWORDS
            ),
            None,
        )

        return JobRequest(
            job=job,
            project_hint=project_hint,
            pr_number=pr_number,
            fix_conflicts=job == JobName.REVIEW and conflict_signal,
        )

    def parse_slack_issue_pickup_request(self, text: str) -> Optional[IssuePickupRequest]:
        """
        Recognize "please pick up <issue link>" style requests.

        Accepts direct ``/issues/<n>`` links and project-board links that
        carry ``issue=owner%7Crepo%7Cn``. Pull request links are not issues.
        """
        without_mentions = strip_slack_user_mentions(text)
        normalized = self.normalize_for_parsing(without_mentions)
        if not normalized:
            return None

        compact = _WS_RE.sub("", without_mentions)
        direct = _DIRECT_ISSUE_RE.search(compact)
        if direct:
            issue_url = direct.group(0)
            repo = direct.group(2).lower()
            issue_number = direct.group(3)
        else:
            board = _BOARD_ISSUE_RE.search(compact)
            if not board:
                return None
            parts = _ENCODED_PIPE_RE.sub("|", board.group(1)).split("|")
            if len(parts) < 3 or not parts[-1].isdigit():
                return None
            issue_url = board.group(0)
            repo = parts[-2].lower()
            issue_number = parts[-1]

        pickup_signal = bool(_PICKUP_SIGNAL_RE.search(normalized))
        request_signal = bool(
            _PICKUP_REQUEST_RE.search(normalized) and _THIS_ISSUE_RE.search(normalized)
        )
        if not pickup_signal and not request_signal:
            return None

        return IssuePickupRequest(
            issue_number=issue_number,
            issue_url=issue_url,
            repo_hint=repo,
        )

    def parse_slack_provider_request(self, text: str) -> Optional[ProviderRequest]:
        """
        Recognize a prompt addressed straight to a coding CLI.

        Examples: "claude fix the flaky tests",
        "can you run codex on api: investigate CI failures".
        """
        without_mentions = strip_slack_user_mentions(text)
        if not without_mentions.strip():
            return None

        prefix = _PROVIDER_PREFIX_RE.match(without_mentions)
        if not prefix:
            return None

        provider = ChatProvider(prefix.group(1).lower())
        remainder = without_mentions[prefix.end():].strip()
        if not remainder:
            return None

        project_hint = None
        project = _PROVIDER_PROJECT_RE.match(remainder)
        if project:
            candidate = project.group(1).lower()
            if candidate not in JOB_STOPWORDS:
                project_hint = candidate
            remainder = remainder[project.end():].strip()

        if not remainder:
            return None
        return ProviderRequest(provider=provider, prompt=remainder, project_hint=project_hint)

    def parse_slack_issue_reviewable(self, text: str) -> Optional[IssueReviewable]:
        """Find a direct GitHub issue link (board-view links are not reviewable)."""
        compact = _WS_RE.sub("", text)
        match = _DIRECT_ISSUE_RE.search(compact)
        if not match:
            return None

        owner, repo, number = match.group(1), match.group(2), match.group(3)
        return IssueReviewable(
            issue_url=match.group(0),
            issue_ref=f"{owner}/{repo}#{number}",
            owner=owner,
            repo=repo,
            issue_number=number,
        )

    # ======================
    # URL extraction
    # ======================

    def extract_github_issue_urls(self, text: str) -> list[str]:
        return [
            url
            for url in _GITHUB_URL_RE.findall(text)
            if _GITHUB_ISSUE_OR_PR_PATH_RE.search(url)
        ]

    def extract_generic_urls(self, text: str) -> list[str]:
        """
        Collect non-GitHub links, bracket-wrapped (``<url|label>``) or bare.

        Order of first appearance is kept; duplicates are dropped.
        """
        bracket_urls = _BRACKET_URL_RE.findall(text)
        plain_urls = [url for url in _PLAIN_URL_RE.findall(text) if url not in bracket_urls]
        unique = list(dict.fromkeys([*bracket_urls, *plain_urls]))
        return [url for url in unique if "github.com" not in url]
