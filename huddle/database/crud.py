"""
CRUD operations for database models.

Provides async functions for persisting the persona roster and reading and
updating discussion records. Every function takes the caller's session;
committing is the caller's job.
"""

import json
from typing import Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from huddle.database.models import DiscussionRecord, PersonaIntroRecord, PersonaRecord
from huddle.utils.timestamps import utc_now


# =====================
# Persona CRUD
# =====================


async def upsert_persona(
    session: AsyncSession,
    persona_id: str,
    name: str,
    role: str,
    payload: str,
    is_active: bool = True,
    sort_order: int = 0,
) -> PersonaRecord:
    """
    Insert a persona or overwrite the stored snapshot.

    Args:
        session: Database session.
        persona_id: Stable persona identifier.
        name: Display name.
        role: Role title.
        payload: Persona JSON.
        is_active: Whether the persona takes part in discussions.
        sort_order: Roster position; active personas are returned in this order.

    Returns:
        PersonaRecord: The stored record.
    """
    record = await session.get(PersonaRecord, persona_id)
    if record is None:
        record = PersonaRecord(id=persona_id)
        session.add(record)
    record.name = name
    record.role = role
    record.payload = payload
    record.is_active = is_active
    record.sort_order = sort_order
    record.updated_at = utc_now()
    await session.flush()
    return record


async def list_active_personas(session: AsyncSession) -> list[PersonaRecord]:
    stmt = (
        select(PersonaRecord)
        .where(PersonaRecord.is_active.is_(True))
        .order_by(PersonaRecord.sort_order, PersonaRecord.id)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_introduced_persona_ids(session: AsyncSession) -> set[str]:
    result = await session.execute(select(PersonaIntroRecord.persona_id))
    return set(result.scalars().all())


async def mark_persona_introduced(session: AsyncSession, persona_id: str) -> None:
    """Record that a persona has introduced itself; repeated calls are no-ops."""
    if await session.get(PersonaIntroRecord, persona_id) is None:
        session.add(PersonaIntroRecord(persona_id=persona_id, introduced_at=utc_now()))
        await session.flush()


# =====================
# Discussion CRUD
# =====================


async def create_discussion(
    session: AsyncSession,
    discussion_id: str,
    project_path: str,
    trigger_type: str,
    trigger_ref: str,
    channel_id: str,
    thread_ts: str,
    round: int = 0,
    participants: Optional[Sequence[str]] = None,
) -> DiscussionRecord:
    """
    Create a new discussion record in the active state.

    Args:
        session: Database session.
        discussion_id: Unique discussion identifier.
        project_path: Project the trigger belongs to.
        trigger_type: Trigger kind (pr_review, code_watch, ...).
        trigger_ref: PR number, PRD name or issue reference.
        channel_id: Chat channel of the thread.
        thread_ts: Timestamp of the thread's root message.
        round: Starting round.
        participants: Initial participant persona ids, in order.

    Returns:
        DiscussionRecord: The created record.
    """
    now = utc_now()
    record = DiscussionRecord(
        id=discussion_id,
        project_path=project_path,
        trigger_type=trigger_type,
        trigger_ref=trigger_ref,
        channel_id=channel_id,
        thread_ts=thread_ts,
        status="active",
        round=round,
        participants=json.dumps(list(dict.fromkeys(participants or []))),
        created_at=now,
        updated_at=now,
    )
    session.add(record)
    await session.flush()
    return record


async def get_discussion(session: AsyncSession, discussion_id: str) -> Optional[DiscussionRecord]:
    return await session.get(DiscussionRecord, discussion_id)


async def get_latest_discussion_by_trigger(
    session: AsyncSession,
    project_path: str,
    trigger_type: str,
    trigger_ref: str,
) -> Optional[DiscussionRecord]:
    """Most recently created discussion for a trigger, any status."""
    stmt = (
        select(DiscussionRecord)
        .where(
            DiscussionRecord.project_path == project_path,
            DiscussionRecord.trigger_type == trigger_type,
            DiscussionRecord.trigger_ref == trigger_ref,
        )
        .order_by(DiscussionRecord.created_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def find_active_discussion_by_thread(
    session: AsyncSession,
    channel_id: str,
    thread_ts: str,
) -> Optional[DiscussionRecord]:
    stmt = (
        select(DiscussionRecord)
        .where(
            DiscussionRecord.channel_id == channel_id,
            DiscussionRecord.thread_ts == thread_ts,
            DiscussionRecord.status == "active",
        )
        .order_by(DiscussionRecord.created_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_discussions(
    session: AsyncSession,
    status: Optional[str] = None,
    limit: int = 50,
    offset: int = 0,
) -> list[DiscussionRecord]:
    """
    List discussions, newest first.

    Args:
        session: Database session.
        status: Filter by status (active, consensus, blocked, closed).
        limit: Maximum number of results.
        offset: Number of results to skip.

    Returns:
        List of DiscussionRecord objects.
    """
    stmt = select(DiscussionRecord).order_by(DiscussionRecord.created_at.desc())
    if status:
        stmt = stmt.where(DiscussionRecord.status == status)
    stmt = stmt.limit(limit).offset(offset)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_discussion_status(
    session: AsyncSession,
    discussion_id: str,
    status: str,
    consensus_result: Optional[str] = None,
) -> None:
    stmt = (
        update(DiscussionRecord)
        .where(DiscussionRecord.id == discussion_id)
        .values(
            status=status,
            consensus_result=consensus_result,
            updated_at=utc_now(),
        )
    )
    await session.execute(stmt)


async def update_discussion_round(session: AsyncSession, discussion_id: str, round: int) -> None:
    """Raise the round; a lower value than the stored one is ignored."""
    stmt = (
        update(DiscussionRecord)
        .where(DiscussionRecord.id == discussion_id, DiscussionRecord.round < round)
        .values(round=round, updated_at=utc_now())
    )
    await session.execute(stmt)


async def add_discussion_participant(
    session: AsyncSession,
    discussion_id: str,
    persona_id: str,
) -> None:
    """Append a persona id to the participant list if not already present."""
    record = await session.get(DiscussionRecord, discussion_id)
    if record is None:
        return
    participants = json.loads(record.participants or "[]")
    if persona_id in participants:
        return
    participants.append(persona_id)
    record.participants = json.dumps(participants)
    record.updated_at = utc_now()
    await session.flush()
