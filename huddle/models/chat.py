"""
Inbound chat events and the structured intents parsed out of them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class InboundEvent(BaseModel):
    """
    A chat-platform event as delivered by the Events API.

    Every field is optional; the ignore gate decides whether the event is
    complete enough to process.
    """

    type: Optional[str] = None
    subtype: Optional[str] = None
    bot_id: Optional[str] = None
    user: Optional[str] = None
    text: Optional[str] = None
    channel: Optional[str] = None
    ts: Optional[str] = None
    thread_ts: Optional[str] = None

    model_config = {"extra": "allow"}


class JobName(str, Enum):
    RUN = "run"
    REVIEW = "review"
    QA = "qa"


class ChatProvider(str, Enum):
    CLAUDE = "claude"
    CODEX = "codex"


@dataclass(frozen=True)
class JobRequest:
    """``run``/``review``/``qa`` asked for in chat."""

    job: JobName
    project_hint: Optional[str] = None
    pr_number: Optional[str] = None
    fix_conflicts: bool = False


@dataclass(frozen=True)
class ProviderRequest:
    """A free-form prompt addressed to a coding CLI provider."""

    provider: ChatProvider
    prompt: str
    project_hint: Optional[str] = None


@dataclass(frozen=True)
class IssuePickupRequest:
    issue_number: str
    issue_url: str
    repo_hint: Optional[str] = None


@dataclass(frozen=True)
class IssueReviewable:
    """A direct GitHub issue link that can be triaged."""

    issue_url: str
    issue_ref: str
    owner: str
    repo: str
    issue_number: str
