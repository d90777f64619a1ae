"""
SQLAlchemy-backed discussion repository.

Implements the repository protocol the deliberation engine depends on. Each
call runs in its own session and commits before returning, so records are
visible to concurrent discussions immediately.
"""

import json
import uuid
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from huddle.database import crud
from huddle.database.models import DiscussionRecord
from huddle.models.discussion import (
    ConsensusResult,
    Discussion,
    DiscussionStatus,
    TriggerType,
)
from huddle.models.persona import Persona
from huddle.utils.logging import get_logger

logger = get_logger(__name__)


def record_to_discussion(record: DiscussionRecord) -> Discussion:
    return Discussion(
        id=record.id,
        project_path=record.project_path,
        trigger_type=TriggerType(record.trigger_type),
        trigger_ref=record.trigger_ref,
        channel_id=record.channel_id,
        thread_ts=record.thread_ts,
        status=DiscussionStatus(record.status),
        round=record.round,
        participants=json.loads(record.participants or "[]"),
        consensus_result=(
            ConsensusResult(record.consensus_result) if record.consensus_result else None
        ),
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


class SqlAlchemyDiscussionRepository:
    """
    Durable storage for personas and discussions.

    Args:
        session_factory: Async session factory (see ``database.engine``)

    Usage:
        repository = SqlAlchemyDiscussionRepository(get_session_factory())
        await repository.seed_personas(registry.list_personas())
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    # ======================
    # Personas
    # ======================

    async def seed_personas(self, personas: Sequence[Persona]) -> int:
        """
        Store the roster, overwriting personas with the same id.

        Returns:
            Number of personas written
        """
        async with self._session_factory() as session:
            for position, persona in enumerate(personas):
                await crud.upsert_persona(
                    session,
                    persona_id=persona.id,
                    name=persona.name,
                    role=persona.role,
                    payload=persona.model_dump_json(),
                    is_active=persona.is_active,
                    sort_order=position,
                )
            await session.commit()
        logger.info("personas_seeded", count=len(personas))
        return len(personas)

    async def get_active_personas(self) -> list[Persona]:
        async with self._session_factory() as session:
            records = await crud.list_active_personas(session)
        return [Persona.model_validate_json(record.payload) for record in records]

    async def get_introduced_persona_ids(self) -> set[str]:
        async with self._session_factory() as session:
            return await crud.list_introduced_persona_ids(session)

    async def mark_persona_introduced(self, persona_id: str) -> None:
        async with self._session_factory() as session:
            await crud.mark_persona_introduced(session, persona_id)
            await session.commit()

    # ======================
    # Discussions
    # ======================

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
    ) -> Discussion:
        async with self._session_factory() as session:
            record = await crud.create_discussion(
                session,
                discussion_id=str(uuid.uuid4()),
                project_path=project_path,
                trigger_type=trigger_type.value,
                trigger_ref=trigger_ref,
                channel_id=channel_id,
                thread_ts=thread_ts,
                round=round,
                participants=participants,
            )
            discussion = record_to_discussion(record)
            await session.commit()
        return discussion

    async def get_discussion(self, discussion_id: str) -> Optional[Discussion]:
        async with self._session_factory() as session:
            record = await crud.get_discussion(session, discussion_id)
            return record_to_discussion(record) if record else None

    async def get_latest_by_trigger(
        self, project_path: str, trigger_type: TriggerType, trigger_ref: str
    ) -> Optional[Discussion]:
        async with self._session_factory() as session:
            record = await crud.get_latest_discussion_by_trigger(
                session, project_path, trigger_type.value, trigger_ref
            )
            return record_to_discussion(record) if record else None

    async def find_active_by_thread(self, channel_id: str, thread_ts: str) -> Optional[Discussion]:
        async with self._session_factory() as session:
            record = await crud.find_active_discussion_by_thread(session, channel_id, thread_ts)
            return record_to_discussion(record) if record else None

    async def update_status(
        self,
        discussion_id: str,
        status: DiscussionStatus,
        consensus_result: Optional[ConsensusResult] = None,
    ) -> None:
        async with self._session_factory() as session:
            await crud.update_discussion_status(
                session,
                discussion_id,
                status.value,
                consensus_result.value if consensus_result else None,
            )
            await session.commit()

    async def update_round(self, discussion_id: str, round: int) -> None:
        async with self._session_factory() as session:
            await crud.update_discussion_round(session, discussion_id, round)
            await session.commit()

    async def add_participant(self, discussion_id: str, persona_id: str) -> None:
        async with self._session_factory() as session:
            await crud.add_discussion_participant(session, discussion_id, persona_id)
            await session.commit()

    async def list_discussions(
        self, limit: int = 50, status: Optional[DiscussionStatus] = None
    ) -> list[Discussion]:
        async with self._session_factory() as session:
            records = await crud.list_discussions(
                session, status=status.value if status else None, limit=limit
            )
            return [record_to_discussion(record) for record in records]
