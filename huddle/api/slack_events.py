"""
Slack Events API endpoint.

Verifies the request signature, answers the ``url_verification`` handshake
and acknowledges every event immediately; routing runs as a background task
so Slack's three-second delivery deadline is never at risk.
"""

import json
import time
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Header, HTTPException, Request, status
from pydantic import BaseModel

from huddle.api.services import get_interaction_router
from huddle.config.settings import get_settings
from huddle.utils.logging import get_logger
from huddle.utils.slack_signature import validate_slack_signature

logger = get_logger(__name__)

router = APIRouter(prefix="/slack", tags=["Slack"])


class SlackEventAck(BaseModel):
    """Acknowledgment returned to Slack."""

    status: str
    processed_in_ms: float


async def _route_event(payload: dict) -> None:
    try:
        interaction_router = get_interaction_router()
    except RuntimeError as e:
        logger.warning("slack_event_dropped", reason=str(e))
        return
    await interaction_router.handle_events_payload(payload)


@router.post("/events")
async def slack_events(
    request: Request,
    background_tasks: BackgroundTasks,
    x_slack_signature: Optional[str] = Header(None),
    x_slack_request_timestamp: Optional[str] = Header(None),
):
    """
    Receive Slack Events API callbacks.

    Raises:
        HTTPException: 401 on a bad or missing signature
        HTTPException: 400 if the body is not JSON
    """
    start_time = time.time()
    raw_body = await request.body()

    app_settings = get_settings()
    if app_settings.slack_signing_secret:
        if not validate_slack_signature(
            raw_body,
            x_slack_request_timestamp,
            x_slack_signature,
            app_settings.slack_signing_secret,
        ):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid Slack signature",
            )
    elif app_settings.is_production:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Slack signing secret not configured",
        )
    # In development, allow unsigned events

    try:
        payload = json.loads(raw_body)
    except json.JSONDecodeError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON payload",
        )

    if payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge", "")}

    retry_num = request.headers.get("X-Slack-Retry-Num")
    if retry_num:
        logger.info("slack_event_retry", retry_num=retry_num)

    background_tasks.add_task(_route_event, payload)

    elapsed_ms = (time.time() - start_time) * 1000
    return SlackEventAck(status="accepted", processed_in_ms=round(elapsed_ms, 2))
