"""
FastAPI application entry point for huddle.

Wires settings, logging, the database, the persona roster, the deliberation
engine and the inbound message router together, and exposes the Slack
Events endpoint, the discussions API and a health check.
"""

import asyncio
import time
from typing import Dict, Optional

from fastapi import FastAPI, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text

from huddle import __version__
from huddle.api.discussions import router as discussions_router
from huddle.api.middleware import RequestLoggingMiddleware
from huddle.api.services import get_engine, get_repository, set_services
from huddle.api.slack_events import router as slack_router
from huddle.config.settings import get_settings
from huddle.database.engine import close_db, get_engine as get_db_engine, get_session_factory, init_db
from huddle.database.repository import SqlAlchemyDiscussionRepository
from huddle.integrations.board import GitHubBoardProviderFactory
from huddle.integrations.gh_cli import GhCli
from huddle.integrations.llm_provider import LiteLLMContributionGenerator
from huddle.integrations.slack_transport import SlackTransport
from huddle.orchestration.deliberation import DeliberationEngine
from huddle.orchestration.interaction import InteractionRouter
from huddle.orchestration.proactive import ProactiveLoop
from huddle.personas.memory import MemoryService
from huddle.personas.registry import PersonaRegistry, PersonaRegistryError
from huddle.utils.logging import get_logger, setup_logging
from huddle.utils.timestamps import utc_now

logger = get_logger(__name__)

_board_factory: Optional[GitHubBoardProviderFactory] = None
_interaction_router: Optional[InteractionRouter] = None
_proactive_loop: Optional[ProactiveLoop] = None

app = FastAPI(
    title="huddle",
    description=(
        "Turns engineering signals into threaded Slack discussions between "
        "simulated teammates, and files the outcome on the project board."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)

app.add_middleware(RequestLoggingMiddleware)

app.include_router(slack_router)
app.include_router(discussions_router)


class ComponentStatus(BaseModel):
    """Status of a single system component."""

    status: str  # "healthy", "unhealthy", "degraded"
    message: Optional[str] = None
    response_time_ms: Optional[float] = None


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    timestamp: str
    service: str
    components: Optional[Dict[str, ComponentStatus]] = None
    response_time_ms: Optional[float] = None


# ---------------------------------------------------------------------------
# Health helpers
# ---------------------------------------------------------------------------

async def _check_database() -> ComponentStatus:
    start = time.perf_counter()
    try:
        async with get_db_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
        elapsed = (time.perf_counter() - start) * 1000
        return ComponentStatus(status="healthy", response_time_ms=round(elapsed, 1))
    except Exception as exc:
        elapsed = (time.perf_counter() - start) * 1000
        return ComponentStatus(
            status="unhealthy",
            message=str(exc)[:200],
            response_time_ms=round(elapsed, 1),
        )


async def _check_personas() -> ComponentStatus:
    """Check that the roster has at least one active persona."""
    start = time.perf_counter()
    try:
        personas = await get_repository().get_active_personas()
    except RuntimeError:
        return ComponentStatus(status="unhealthy", message="Repository not initialized")
    except Exception as exc:
        return ComponentStatus(status="unhealthy", message=str(exc)[:200])

    elapsed = (time.perf_counter() - start) * 1000
    if not personas:
        return ComponentStatus(
            status="degraded",
            message="No active personas",
            response_time_ms=round(elapsed, 1),
        )
    return ComponentStatus(
        status="healthy",
        message=f"{len(personas)} personas active",
        response_time_ms=round(elapsed, 1),
    )


def _check_engine() -> ComponentStatus:
    try:
        get_engine()
    except RuntimeError as e:
        return ComponentStatus(status="degraded", message=str(e))
    return ComponentStatus(status="healthy")


def _overall_status(components: Dict[str, ComponentStatus]) -> str:
    statuses = {c.status for c in components.values()}
    if "unhealthy" in statuses:
        return "unhealthy"
    if "degraded" in statuses:
        return "degraded"
    return "healthy"


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    responses={
        200: {"description": "Service is healthy or degraded"},
        503: {"description": "Service is unhealthy"},
    },
)
async def health_check(response: Response) -> HealthResponse:
    """
    Health check with component status for the database, the persona
    roster and the deliberation engine.

    Returns 503 if any component is unhealthy.
    """
    start = time.perf_counter()
    db_status, persona_status = await asyncio.gather(_check_database(), _check_personas())
    components = {
        "database": db_status,
        "personas": persona_status,
        "engine": _check_engine(),
    }

    overall = _overall_status(components)
    if overall == "unhealthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status=overall,
        version=__version__,
        timestamp=utc_now().isoformat() + "Z",
        service="huddle",
        components=components,
        response_time_ms=round((time.perf_counter() - start) * 1000, 1),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc: Exception) -> JSONResponse:
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=str(request.url.path),
        exc_info=True,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error", "type": type(exc).__name__},
    )


@app.on_event("startup")
async def startup_event() -> None:
    """
    Application startup:
    - Configures structured logging
    - Validates configuration
    - Creates tables and seeds the persona roster
    - Builds the engine and router when Slack is configured
    - Starts persona intros and the proactive loop
    """
    global logger, _board_factory, _interaction_router, _proactive_loop

    app_settings = get_settings()
    setup_logging(log_level=app_settings.log_level, environment=app_settings.environment)
    logger = get_logger(__name__)
    logger.info("app_starting", version=__version__)

    try:
        for warning in app_settings.validate_for_startup():
            logger.warning("config_warning", message=warning)
        app_settings.log_configuration_summary()
    except ValueError as e:
        logger.error("config_validation_failed", error=str(e))
        if app_settings.is_production:
            raise

    await init_db(app_settings.database_url)
    repository = SqlAlchemyDiscussionRepository(get_session_factory())

    registry = PersonaRegistry()
    try:
        registry.load_from_yaml(app_settings.personas_file)
        await repository.seed_personas(registry.list_personas())
    except PersonaRegistryError as e:
        logger.error("persona_registry_load_error", error=str(e))

    if not app_settings.has_slack_token:
        logger.warning("slack_not_configured", detail="engine disabled, read-only API")
        set_services(None, None, repository)
        return

    transport = SlackTransport(token=app_settings.slack_bot_token)
    gh = GhCli(app_settings.gh_binary, app_settings.gh_timeout_seconds)
    _board_factory = GitHubBoardProviderFactory(app_settings.github_token, app_settings.projects)
    generator = LiteLLMContributionGenerator(
        default_model=app_settings.default_model,
        default_max_tokens=app_settings.default_max_tokens,
        default_temperature=app_settings.default_temperature,
    )
    engine = DeliberationEngine(
        transport,
        repository,
        generator,
        app_settings,
        board_factory=_board_factory,
        gh=gh,
        memory=MemoryService(app_settings.memory_dir) if app_settings.memory_enabled else None,
    )
    bot_user_id = app_settings.slack_bot_user_id or await transport.get_bot_user_id()
    _interaction_router = InteractionRouter(
        engine,
        app_settings,
        board_factory=_board_factory,
        bot_user_id=bot_user_id,
    )
    set_services(engine, _interaction_router, repository)
    _interaction_router.start()
    if app_settings.proactive_enabled:
        _proactive_loop = ProactiveLoop(engine, app_settings)
        _proactive_loop.start()
    logger.info("app_started", version=__version__, bot_user_id=bot_user_id)


@app.on_event("shutdown")
async def shutdown_event() -> None:
    logger.info("app_shutting_down")

    if _proactive_loop is not None:
        await _proactive_loop.stop()
    if _interaction_router is not None:
        await _interaction_router.shutdown()
    try:
        await get_engine().shutdown()
    except RuntimeError:
        pass
    if _board_factory is not None:
        _board_factory.close()
    set_services(None, None, None)

    try:
        await close_db()
    except Exception as e:
        logger.warning("database_close_error", error=str(e))

    logger.info("app_shutdown_complete")


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "huddle.api.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="info",
    )
