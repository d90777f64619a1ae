"""
SQLAlchemy ORM models for persona and discussion persistence.

Defines database tables for:
- Personas: The seeded roster, one JSON snapshot per persona
- Discussions: Deliberation threads and their outcome
- Persona intros: Which personas have introduced themselves in Slack
"""

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase

from huddle.utils.timestamps import utc_now


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class PersonaRecord(Base):
    """
    A persona in the roster.

    The full persona (soul, style, skill, model override) is stored as the
    pydantic model's JSON in ``payload``; ``name``, ``role`` and
    ``is_active`` are duplicated as columns for querying.
    """

    __tablename__ = "personas"

    id = Column(String(100), primary_key=True)
    name = Column(String(255), nullable=False)
    role = Column(String(255), nullable=False)
    payload = Column(Text, nullable=False)  # Persona.model_dump_json()
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    sort_order = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    def __repr__(self) -> str:
        return f"<PersonaRecord(id='{self.id}', name='{self.name}', active={self.is_active})>"


class PersonaIntroRecord(Base):
    """A persona that has posted its introduction; kept apart from the roster so reseeding never resets it."""

    __tablename__ = "persona_intros"

    persona_id = Column(String(100), primary_key=True)
    introduced_at = Column(DateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"<PersonaIntroRecord(persona_id='{self.persona_id}')>"


class DiscussionRecord(Base):
    """
    A deliberation thread.

    One row per started discussion; the replay guard looks rows up by
    ``(project_path, trigger_type, trigger_ref)`` and the router by
    ``(channel_id, thread_ts)``.
    """

    __tablename__ = "discussions"

    id = Column(String(36), primary_key=True)
    project_path = Column(String(1000), nullable=False)
    trigger_type = Column(String(50), nullable=False)
    trigger_ref = Column(String(500), nullable=False)
    channel_id = Column(String(100), nullable=False)
    thread_ts = Column(String(64), nullable=False)
    status = Column(
        String(50),
        nullable=False,
        default="active",
        index=True,
    )  # active, consensus, blocked, closed
    round = Column(Integer, nullable=False, default=0)
    participants = Column(Text, nullable=False, default="[]")  # JSON-encoded ordered list
    consensus_result = Column(String(50), nullable=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(
        DateTime,
        nullable=False,
        default=utc_now,
        onupdate=utc_now,
    )

    __table_args__ = (
        Index("ix_discussions_trigger", "project_path", "trigger_type", "trigger_ref"),
        Index("ix_discussions_thread", "channel_id", "thread_ts"),
    )

    def __repr__(self) -> str:
        return (
            f"<DiscussionRecord(id='{self.id}', trigger={self.trigger_type}:{self.trigger_ref}, "
            f"status='{self.status}', round={self.round})>"
        )
