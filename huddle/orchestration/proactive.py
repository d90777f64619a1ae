"""
Proactive channel activity.

A background loop that keeps project channels from going silent: every
sweep it schedules periodic code-watch audits and, for each project channel
that has been idle long enough, lets a random persona post one unprompted
message. Idleness is read from the shared thread state, so any post or
inbound message resets it.

Usage:
    loop = ProactiveLoop(engine, settings, job_dispatcher=dispatcher)
    loop.start()
    ...
    await loop.stop()
"""

import asyncio
import os
from typing import Awaitable, Callable, Optional

from huddle.config.settings import AppSettings
from huddle.models.discussion import TriggerType
from huddle.models.project import ProjectConfig
from huddle.orchestration.collaborators import JobDispatch, JobDispatcher
from huddle.orchestration.deliberation import DeliberationEngine, project_slug
from huddle.orchestration.interaction import build_project_context
from huddle.personas.resolver import find_dev
from huddle.personas.roadmap import (
    RoadmapItem,
    RoadmapMode,
    compile_roadmap_context,
    load_roadmap_items,
)
from huddle.utils.logging import get_logger

logger = get_logger(__name__)

MS_PER_MINUTE = 60_000


class ProactiveLoop:
    """
    Periodic idle-channel sweep.

    Args:
        engine: Deliberation engine (its thread state and repository are shared)
        settings: Projects and proactive timings
        job_dispatcher: Receives scheduled code-watch audits; without one they are skipped
        path_exists: Checks a project path before auditing it
        sleep: Awaitable sleep between sweeps
        roadmap_loader: Reads roadmap items for a project path
    """

    def __init__(
        self,
        engine: DeliberationEngine,
        settings: AppSettings,
        job_dispatcher: Optional[JobDispatcher] = None,
        path_exists: Callable[[str], bool] = os.path.isdir,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        roadmap_loader: Callable[[str], list[RoadmapItem]] = load_roadmap_items,
    ):
        self.engine = engine
        self.settings = settings
        self.job_dispatcher = job_dispatcher
        self._path_exists = path_exists
        self._sleep = sleep
        self._roadmap_loader = roadmap_loader

        self._last_proactive_at: dict[str, float] = {}
        self._last_code_watch_at: dict[str, float] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def thread_state(self):
        return self.engine.thread_state

    @property
    def is_running(self) -> bool:
        return self._running

    # ======================
    # Lifecycle
    # ======================

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._running = True
        self._task = asyncio.create_task(self._run())
        logger.info("proactive_loop_started", sweep_seconds=self.settings.proactive_sweep_seconds)

    async def stop(self) -> None:
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("proactive_loop_stopped")

    async def _run(self) -> None:
        while self._running:
            try:
                await self._sleep(self.settings.proactive_sweep_seconds)
                await self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("proactive_sweep_failed", error=str(e), exc_info=True)

    # ======================
    # Sweep
    # ======================

    async def sweep(self) -> int:
        """
        One pass over the registered projects.

        Returns:
            Number of channels a proactive message was attempted in
        """
        if not self.settings.proactive_enabled:
            return 0
        personas = await self.engine.repository.get_active_personas()
        if not personas:
            return 0

        now = self.thread_state.now()
        projects = list(self.settings.projects)
        await self._schedule_code_watch(projects, personas, now)

        idle_ms = self.settings.proactive_idle_minutes * MS_PER_MINUTE
        interval_ms = self.settings.proactive_min_interval_minutes * MS_PER_MINUTE
        activity = self.thread_state.get_last_channel_activity_at()

        attempted = 0
        for project in projects:
            channel = project.slack_channel_id
            if not channel:
                continue
            last_activity = activity.get(channel, now)
            last_proactive = self._last_proactive_at.get(channel)
            if now - last_activity < idle_ms:
                continue
            if last_proactive is not None and now - last_proactive < interval_ms:
                continue

            persona = personas[self.thread_state.random_int(0, len(personas) - 1)]
            try:
                await self.engine.post_proactive_message(
                    channel,
                    persona,
                    project_context=build_project_context(channel, projects),
                    roadmap_context=self._roadmap_context(project),
                    slug=project_slug(project.path),
                )
            except Exception as e:
                logger.warning("proactive_message_failed", channel=channel, error=str(e))
                continue
            self._last_proactive_at[channel] = now
            self.thread_state.mark_channel_activity(channel)
            attempted += 1
        return attempted

    def _roadmap_context(self, project: ProjectConfig) -> str:
        try:
            items = self._roadmap_loader(project.path)
        except Exception as e:
            logger.warning("roadmap_load_failed", project_path=project.path, error=str(e))
            return ""
        return compile_roadmap_context(items, RoadmapMode.SUMMARY)

    async def _schedule_code_watch(self, projects, personas, now: float) -> None:
        """Queue a code-watch audit per project at most once per configured interval."""
        interval_ms = self.settings.proactive_code_watch_interval_minutes * MS_PER_MINUTE
        persona = find_dev(personas) or personas[0]
        for project in projects:
            channel = project.slack_channel_id
            if not channel or not self._path_exists(project.path):
                continue
            last = self._last_code_watch_at.get(project.path)
            if last is not None and now - last < interval_ms:
                continue
            self._last_code_watch_at[project.path] = now

            if self.job_dispatcher is None:
                logger.debug("code_watch_skipped", project=project.name, reason="no_dispatcher")
                continue
            try:
                await self.job_dispatcher.dispatch(
                    JobDispatch(
                        job=TriggerType.CODE_WATCH.value,
                        project_path=project.path,
                        channel=channel,
                        thread_ts="",
                        persona_id=persona.id,
                    )
                )
                logger.info("code_watch_scheduled", project=project.name)
            except Exception as e:
                logger.warning("code_watch_dispatch_failed", project=project.name, error=str(e))
