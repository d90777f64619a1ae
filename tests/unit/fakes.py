"""
In-memory collaborators for the unit tests.

``FakeTransport`` records posts and serves thread history from them,
``FakeRepository`` keeps discussions in a dict and ``FakeGenerator`` replays
scripted model replies. None of them touch the network.
"""

import itertools
import uuid
from typing import Callable, Optional, Sequence, Union

from huddle.models.discussion import (
    ConsensusResult,
    Discussion,
    DiscussionStatus,
    PostedMessage,
    ThreadMessage,
)
from huddle.models.persona import Persona, PersonaSoul
from huddle.utils.timestamps import utc_now


def make_persona(persona_id: str, name: str, role: str, expertise: Sequence[str] = ()) -> Persona:
    return Persona(
        id=persona_id,
        name=name,
        role=role,
        soul=PersonaSoul(who_i_am=f"{name}, {role}.", expertise=list(expertise)),
    )


class ManualClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


class FakeTransport:
    """Records posts; thread history is the root post plus its replies."""

    def __init__(self, fail_on: Optional[Callable[[str], bool]] = None):
        self.posts: list[dict] = []
        self.reactions: list[dict] = []
        self.joined: list[str] = []
        self._ts = itertools.count(1)
        self._fail_on = fail_on

    async def post_as_agent(self, channel, text, persona, thread_ts=None) -> PostedMessage:
        if self._fail_on and self._fail_on(text):
            raise RuntimeError("post rejected")
        ts = f"1700000000.{next(self._ts):06d}"
        self.posts.append(
            {
                "channel": channel,
                "text": text,
                "persona": persona.name,
                "thread_ts": thread_ts,
                "ts": ts,
            }
        )
        return PostedMessage(channel=channel, ts=ts)

    async def get_thread_history(self, channel, thread_ts, limit=10) -> list[ThreadMessage]:
        messages = [
            ThreadMessage(ts=p["ts"], text=p["text"], username=p["persona"])
            for p in self.posts
            if p["channel"] == channel and (p["ts"] == thread_ts or p["thread_ts"] == thread_ts)
        ]
        return messages[-limit:]

    async def add_reaction(self, channel, ts, emoji) -> None:
        self.reactions.append({"channel": channel, "ts": ts, "emoji": emoji})

    async def join_channel(self, channel) -> None:
        self.joined.append(channel)

    def texts(self) -> list[str]:
        return [p["text"] for p in self.posts]

    def by(self, name: str) -> list[str]:
        return [p["text"] for p in self.posts if p["persona"] == name]


class FakeRepository:
    """Dict-backed discussion repository."""

    def __init__(self, personas: Sequence[Persona]):
        self.personas = list(personas)
        self.discussions: dict[str, Discussion] = {}
        self.introduced: set[str] = set()

    async def get_active_personas(self) -> list[Persona]:
        return [p for p in self.personas if p.is_active]

    async def get_introduced_persona_ids(self) -> set[str]:
        return set(self.introduced)

    async def mark_persona_introduced(self, persona_id) -> None:
        self.introduced.add(persona_id)

    async def create_discussion(
        self, *, project_path, trigger_type, trigger_ref, channel_id, thread_ts, round, participants
    ) -> Discussion:
        discussion = Discussion(
            id=str(uuid.uuid4()),
            project_path=project_path,
            trigger_type=trigger_type,
            trigger_ref=trigger_ref,
            channel_id=channel_id,
            thread_ts=thread_ts,
            round=round,
            participants=list(dict.fromkeys(participants)),
        )
        self.discussions[discussion.id] = discussion
        return discussion

    async def get_discussion(self, discussion_id) -> Optional[Discussion]:
        return self.discussions.get(discussion_id)

    async def get_latest_by_trigger(self, project_path, trigger_type, trigger_ref):
        matches = [
            d
            for d in self.discussions.values()
            if d.project_path == project_path
            and d.trigger_type == trigger_type
            and d.trigger_ref == trigger_ref
        ]
        return max(matches, key=lambda d: d.created_at) if matches else None

    async def find_active_by_thread(self, channel_id, thread_ts):
        return next(
            (
                d
                for d in self.discussions.values()
                if d.channel_id == channel_id and d.thread_ts == thread_ts and d.is_active
            ),
            None,
        )

    async def update_status(
        self, discussion_id, status: DiscussionStatus, consensus_result: Optional[ConsensusResult] = None
    ) -> None:
        current = self.discussions[discussion_id]
        self.discussions[discussion_id] = current.model_copy(
            update={
                "status": status,
                "consensus_result": consensus_result,
                "updated_at": utc_now(),
            }
        )

    async def update_round(self, discussion_id, round: int) -> None:
        current = self.discussions[discussion_id]
        if round > current.round:
            self.discussions[discussion_id] = current.model_copy(update={"round": round})

    async def add_participant(self, discussion_id, persona_id) -> None:
        current = self.discussions[discussion_id]
        if persona_id not in current.participants:
            self.discussions[discussion_id] = current.model_copy(
                update={"participants": [*current.participants, persona_id]}
            )

    async def list_discussions(self, limit=50, status=None) -> list[Discussion]:
        items = [d for d in self.discussions.values() if status is None or d.status == status]
        return sorted(items, key=lambda d: d.created_at, reverse=True)[:limit]


Reply = Union[str, Exception]


class FakeGenerator:
    """
    Scripted model replies.

    ``respond`` picks a reply from the user prompt; exceptions are raised.
    """

    def __init__(self, respond: Optional[Callable[[str, Optional[Persona]], Reply]] = None):
        self.calls: list[dict] = []
        self._respond = respond or (lambda prompt, persona: f"{persona.name} take on this.")

    async def generate(self, system_prompt, user_prompt, *, persona=None, max_tokens=None) -> str:
        self.calls.append(
            {
                "system": system_prompt,
                "prompt": user_prompt,
                "persona": persona.name if persona else None,
                "max_tokens": max_tokens,
            }
        )
        reply = self._respond(user_prompt, persona)
        if isinstance(reply, Exception):
            raise reply
        return reply


async def no_sleep(seconds: float) -> None:
    return None
