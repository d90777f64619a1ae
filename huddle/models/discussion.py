"""
Pydantic models for discussions and their triggers.

A trigger is a transient external signal (PR opened, build broke, ...).
A discussion is the durable record of the deliberation it starts: which
thread it lives in, which round it reached, who spoke, and how it ended.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from huddle.utils.timestamps import utc_now


class TriggerType(str, Enum):
    """External signals that start a deliberation."""

    PR_REVIEW = "pr_review"
    BUILD_FAILURE = "build_failure"
    PRD_KICKOFF = "prd_kickoff"
    CODE_WATCH = "code_watch"
    ISSUE_REVIEW = "issue_review"


class DiscussionStatus(str, Enum):
    ACTIVE = "active"
    CONSENSUS = "consensus"
    BLOCKED = "blocked"
    CLOSED = "closed"


class ConsensusResult(str, Enum):
    APPROVED = "approved"
    CHANGES_REQUESTED = "changes_requested"
    HUMAN_NEEDED = "human_needed"


class DiscussionTrigger(BaseModel):
    """
    A signal that starts (or re-anchors) a deliberation.

    ``ref`` correlates the trigger to its subject: a PR number, a PRD name,
    a code location or an ``owner/repo#n`` issue reference.
    """

    type: TriggerType = Field(..., description="Kind of signal")
    project_path: str = Field(..., description="Filesystem path of the project")
    ref: str = Field(..., description="PR number, PRD name or issue reference")
    context: str = Field("", description="Free-text context for the personas")
    pr_url: Optional[str] = Field(None, description="Pull request URL")
    channel_id: Optional[str] = Field(None, description="Chat channel override")
    opening_message: Optional[str] = Field(
        None,
        description="Use this text instead of a generated opener",
    )
    thread_ts: Optional[str] = Field(
        None,
        description="Anchor the discussion on an existing thread",
    )

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "type": "pr_review",
                    "project_path": "/srv/projects/night-watch-cli",
                    "ref": "42",
                    "context": "Adds retry handling to the webhook sender",
                    "pr_url": "https://github.com/acme/night-watch-cli/pull/42",
                },
                {
                    "type": "code_watch",
                    "project_path": "/srv/projects/api",
                    "ref": "src/auth.ts:88",
                    "context": "Location: src/auth.ts\nSignal: Missing validation",
                },
            ]
        }
    }


class Discussion(BaseModel):
    """Persistent state of one deliberation."""

    id: str = Field(..., description="Discussion identifier")
    project_path: str
    trigger_type: TriggerType
    trigger_ref: str
    channel_id: str
    thread_ts: str
    status: DiscussionStatus = DiscussionStatus.ACTIVE
    round: int = Field(0, ge=0, description="Current round (monotonic)")
    participants: list[str] = Field(
        default_factory=list,
        description="Persona ids, each at most once",
    )
    consensus_result: Optional[ConsensusResult] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_active(self) -> bool:
        return self.status == DiscussionStatus.ACTIVE

    @property
    def is_terminal(self) -> bool:
        return self.status != DiscussionStatus.ACTIVE


class ThreadMessage(BaseModel):
    """One message read back from a chat thread."""

    ts: str
    text: str = ""
    username: Optional[str] = None
    user: Optional[str] = None
    bot_id: Optional[str] = None


class PostedMessage(BaseModel):
    """Where the transport put a message."""

    channel: str
    ts: str
