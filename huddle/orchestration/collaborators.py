"""
Interfaces of the external collaborators the orchestrator talks to.

The engine only depends on these protocols; concrete adapters live in
``huddle.integrations`` and ``huddle.database``.
"""

from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

from huddle.models.board import BoardColumn, BoardIssue
from huddle.models.discussion import (
    ConsensusResult,
    Discussion,
    DiscussionStatus,
    PostedMessage,
    ThreadMessage,
    TriggerType,
)
from huddle.models.persona import Persona


class ChatTransport(Protocol):
    async def post_as_agent(
        self,
        channel: str,
        text: str,
        persona: Persona,
        thread_ts: Optional[str] = None,
    ) -> PostedMessage:
        """Post ``text`` under the persona's name and avatar."""
        ...

    async def get_thread_history(
        self, channel: str, thread_ts: str, limit: int = 10
    ) -> list[ThreadMessage]:
        """Most recent ``limit`` messages of a thread, oldest first."""
        ...

    async def add_reaction(self, channel: str, ts: str, emoji: str) -> None:
        """React to message ``ts`` with ``emoji`` (colons optional)."""
        ...

    async def join_channel(self, channel: str) -> None: ...


class ContributionGenerator(Protocol):
    """The only boundary through which a language model is called."""

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        persona: Optional[Persona] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        ...


class DiscussionRepository(Protocol):
    async def get_active_personas(self) -> list[Persona]: ...

    async def create_discussion(
        self,
        *,
        project_path: str,
        trigger_type: TriggerType,
        trigger_ref: str,
        channel_id: str,
        thread_ts: str,
        round: int,
        participants: Sequence[str],
    ) -> Discussion: ...

    async def get_discussion(self, discussion_id: str) -> Optional[Discussion]: ...

    async def get_latest_by_trigger(
        self, project_path: str, trigger_type: TriggerType, trigger_ref: str
    ) -> Optional[Discussion]: ...

    async def find_active_by_thread(
        self, channel_id: str, thread_ts: str
    ) -> Optional[Discussion]: ...

    async def update_status(
        self,
        discussion_id: str,
        status: DiscussionStatus,
        consensus_result: Optional[ConsensusResult] = None,
    ) -> None: ...

    async def update_round(self, discussion_id: str, round: int) -> None: ...

    async def add_participant(self, discussion_id: str, persona_id: str) -> None: ...

    async def list_discussions(
        self, limit: int = 50, status: Optional[DiscussionStatus] = None
    ) -> list[Discussion]: ...

    async def get_introduced_persona_ids(self) -> set[str]: ...

    async def mark_persona_introduced(self, persona_id: str) -> None: ...


class BoardProvider(Protocol):
    async def create_issue(
        self, title: str, body: str, column: Optional[BoardColumn] = None
    ) -> BoardIssue: ...

    async def move_issue(self, number: int, column: BoardColumn) -> None: ...


class BoardProviderFactory(Protocol):
    def for_project(self, project_path: str) -> Optional[BoardProvider]:
        """The board configured for this project, or None. Never another project's."""
        ...


@dataclass(frozen=True)
class JobDispatch:
    """A CLI job requested from chat."""

    job: str
    project_path: str
    channel: str
    thread_ts: str
    persona_id: str
    pr_number: Optional[str] = None
    fix_conflicts: bool = False
    provider: Optional[str] = None
    prompt: Optional[str] = None
    issue_number: Optional[str] = None
    issue_url: Optional[str] = None


class JobDispatcher(Protocol):
    async def dispatch(self, request: JobDispatch) -> None: ...
