"""
API endpoints for discussions.

Provides endpoints to:
- Start a discussion from a trigger
- List discussions and fetch one by id
- Close a discussion
"""

from typing import Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Query, status
from pydantic import BaseModel

from huddle.api.services import get_engine, get_repository
from huddle.models.discussion import Discussion, DiscussionStatus, DiscussionTrigger
from huddle.orchestration.deliberation import DeliberationError, DiscussionNotFoundError
from huddle.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(
    prefix="/discussions",
    tags=["Discussions"],
)


class DiscussionTriggerResponse(BaseModel):
    """Response after accepting a trigger."""

    status: str
    message: str


class DiscussionListResponse(BaseModel):
    total: int
    discussions: list[Discussion]


def _service_unavailable(e: RuntimeError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


async def _run_discussion(trigger: DiscussionTrigger) -> None:
    """Background task that starts a discussion and logs the outcome."""
    try:
        discussion = await get_engine().start_discussion(trigger)
        logger.info(
            "discussion_trigger_completed",
            discussion_id=discussion.id,
            status=discussion.status.value,
        )
    except DeliberationError as e:
        logger.error(
            "discussion_trigger_failed",
            trigger=trigger.type.value,
            ref=trigger.ref,
            error=str(e),
        )


@router.post(
    "",
    response_model=DiscussionTriggerResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_discussion(
    trigger: DiscussionTrigger,
    background_tasks: BackgroundTasks,
) -> DiscussionTriggerResponse:
    """
    Start a discussion for a trigger.

    The discussion runs in the background. A trigger seen again within the
    replay window reuses the existing discussion.
    """
    try:
        get_engine()
    except RuntimeError as e:
        raise _service_unavailable(e)

    background_tasks.add_task(_run_discussion, trigger)
    return DiscussionTriggerResponse(
        status="accepted",
        message=f"Discussion starting for {trigger.type.value} {trigger.ref}",
    )


@router.get("", response_model=DiscussionListResponse)
async def list_discussions(
    discussion_status: Optional[DiscussionStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
) -> DiscussionListResponse:
    """List discussions, newest first."""
    try:
        repository = get_repository()
    except RuntimeError as e:
        raise _service_unavailable(e)

    discussions = await repository.list_discussions(limit=limit, status=discussion_status)
    return DiscussionListResponse(total=len(discussions), discussions=discussions)


@router.get("/{discussion_id}", response_model=Discussion)
async def get_discussion(discussion_id: str) -> Discussion:
    """
    Get a discussion by id.

    Args:
        discussion_id: The discussion id
    """
    try:
        repository = get_repository()
    except RuntimeError as e:
        raise _service_unavailable(e)

    discussion = await repository.get_discussion(discussion_id)
    if discussion is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Discussion '{discussion_id}' not found",
        )
    return discussion


@router.post("/{discussion_id}/close", response_model=Discussion)
async def close_discussion(discussion_id: str) -> Discussion:
    try:
        engine = get_engine()
    except RuntimeError as e:
        raise _service_unavailable(e)

    try:
        return await engine.close_discussion(discussion_id)
    except DiscussionNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
