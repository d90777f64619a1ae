"""
Database package for huddle.

Provides SQLAlchemy ORM models, session management, CRUD operations and the
discussion repository the deliberation engine persists through.
"""

from huddle.database.engine import (
    close_db,
    create_engine_for_url,
    get_engine,
    get_session_factory,
    init_db,
)
from huddle.database.models import Base, DiscussionRecord, PersonaRecord
from huddle.database.repository import SqlAlchemyDiscussionRepository

__all__ = [
    # Engine / Session
    "close_db",
    "create_engine_for_url",
    "get_engine",
    "get_session_factory",
    "init_db",
    # ORM Models
    "Base",
    "DiscussionRecord",
    "PersonaRecord",
    # Repository
    "SqlAlchemyDiscussionRepository",
]
