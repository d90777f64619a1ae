"""
Process-wide service instances shared by the HTTP endpoints.

Set once during application startup; endpoints fetch them per request.
"""

from typing import Optional

from huddle.database.repository import SqlAlchemyDiscussionRepository
from huddle.orchestration.deliberation import DeliberationEngine
from huddle.orchestration.interaction import InteractionRouter

_engine: Optional[DeliberationEngine] = None
_interaction_router: Optional[InteractionRouter] = None
_repository: Optional[SqlAlchemyDiscussionRepository] = None


def set_services(
    engine: Optional[DeliberationEngine],
    interaction_router: Optional[InteractionRouter],
    repository: Optional[SqlAlchemyDiscussionRepository],
) -> None:
    global _engine, _interaction_router, _repository
    _engine = engine
    _interaction_router = interaction_router
    _repository = repository


def get_engine() -> DeliberationEngine:
    """Get the deliberation engine."""
    if _engine is None:
        raise RuntimeError("Deliberation engine not initialized")
    return _engine


def get_interaction_router() -> InteractionRouter:
    """Get the inbound message router."""
    if _interaction_router is None:
        raise RuntimeError("Interaction router not initialized")
    return _interaction_router


def get_repository() -> SqlAlchemyDiscussionRepository:
    """Get the discussion repository."""
    if _repository is None:
        raise RuntimeError("Discussion repository not initialized")
    return _repository
