"""
Unit tests for ProactiveLoop.

The engine is a mock sharing the real thread state, so idleness comes from
the same channel-activity map the router updates.

Covers:
  - Idle threshold and minimum interval between proactive posts
  - Prompt inputs (project context, roadmap, memory slug)
  - Failure containment
  - Periodic code-watch scheduling
  - Loop start / stop
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from huddle.orchestration.collaborators import JobDispatch
from huddle.orchestration.proactive import MS_PER_MINUTE, ProactiveLoop
from huddle.personas.roadmap import RoadmapItem

CHANNEL = "C_PROJ"


@pytest.fixture
def engine(repository, thread_state):
    engine = MagicMock()
    engine.repository = repository
    engine.thread_state = thread_state
    engine.post_proactive_message = AsyncMock(return_value="Anyone looked at the flaky e2e run?")
    return engine


@pytest.fixture
def dispatcher():
    return AsyncMock()


@pytest.fixture
def loop(engine, settings, dispatcher):
    return ProactiveLoop(
        engine,
        settings,
        job_dispatcher=dispatcher,
        path_exists=lambda path: False,
        roadmap_loader=lambda path: [],
    )


def minutes(n: float) -> float:
    return n * MS_PER_MINUTE


# ======================
# Idle channel posts
# ======================


class TestIdlePosts:
    @pytest.mark.asyncio
    async def test_quiet_until_idle(self, loop, engine, thread_state, clock):
        thread_state.mark_channel_activity(CHANNEL)
        clock.advance(minutes(19))

        assert await loop.sweep() == 0
        engine.post_proactive_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unseen_channel_counts_as_just_active(self, loop, engine):
        assert await loop.sweep() == 0
        engine.post_proactive_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_posts_after_idle_threshold(self, loop, engine, thread_state, clock, roster):
        thread_state.mark_channel_activity(CHANNEL)
        clock.advance(minutes(21))

        assert await loop.sweep() == 1

        call = engine.post_proactive_message.await_args
        assert call.args[0] == CHANNEL
        assert call.args[1] in roster
        assert call.kwargs["project_context"] == "Current channel project: night-watch-cli."
        assert call.kwargs["roadmap_context"] == ""
        assert call.kwargs["slug"] == "night-watch-cli"
        assert thread_state.get_last_channel_activity_at()[CHANNEL] == clock.now

    @pytest.mark.asyncio
    async def test_min_interval_between_posts(self, loop, engine, thread_state, clock):
        thread_state.mark_channel_activity(CHANNEL)
        clock.advance(minutes(21))
        await loop.sweep()

        clock.advance(minutes(30))
        assert await loop.sweep() == 0

        clock.advance(minutes(61))
        assert await loop.sweep() == 1
        assert engine.post_proactive_message.await_count == 2

    @pytest.mark.asyncio
    async def test_roadmap_summary_is_included(self, engine, settings, thread_state, clock):
        items = [RoadmapItem(title="Ship webhook retries", section="Now")]
        loop = ProactiveLoop(
            engine, settings, path_exists=lambda path: False, roadmap_loader=lambda path: items
        )
        thread_state.mark_channel_activity(CHANNEL)
        clock.advance(minutes(21))

        await loop.sweep()

        roadmap = engine.post_proactive_message.await_args.kwargs["roadmap_context"]
        assert roadmap == "### Now\n- Ship webhook retries"

    @pytest.mark.asyncio
    async def test_roadmap_failure_is_contained(self, engine, settings, thread_state, clock):
        def broken(path):
            raise OSError("permission denied")

        loop = ProactiveLoop(engine, settings, path_exists=lambda path: False, roadmap_loader=broken)
        thread_state.mark_channel_activity(CHANNEL)
        clock.advance(minutes(21))

        assert await loop.sweep() == 1
        assert engine.post_proactive_message.await_args.kwargs["roadmap_context"] == ""

    @pytest.mark.asyncio
    async def test_post_failure_is_retried_next_sweep(self, loop, engine, thread_state, clock):
        engine.post_proactive_message.side_effect = [RuntimeError("slack down"), "hello"]
        thread_state.mark_channel_activity(CHANNEL)
        clock.advance(minutes(21))

        assert await loop.sweep() == 0
        clock.advance(minutes(1))
        assert await loop.sweep() == 1

    @pytest.mark.asyncio
    async def test_disabled(self, loop, engine, settings, thread_state, clock):
        settings.proactive_enabled = False
        thread_state.mark_channel_activity(CHANNEL)
        clock.advance(minutes(120))

        assert await loop.sweep() == 0
        engine.post_proactive_message.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_personas(self, loop, engine, repository, thread_state, clock):
        repository.personas = []
        thread_state.mark_channel_activity(CHANNEL)
        clock.advance(minutes(21))

        assert await loop.sweep() == 0


# ======================
# Code watch
# ======================


class TestCodeWatch:
    @pytest.fixture
    def loop(self, engine, settings, dispatcher):
        return ProactiveLoop(
            engine,
            settings,
            job_dispatcher=dispatcher,
            path_exists=lambda path: path == "/repos/night-watch-cli",
            roadmap_loader=lambda path: [],
        )

    @pytest.mark.asyncio
    async def test_first_sweep_schedules_audit(self, loop, dispatcher):
        await loop.sweep()

        dispatcher.dispatch.assert_awaited_once_with(
            JobDispatch(
                job="code_watch",
                project_path="/repos/night-watch-cli",
                channel=CHANNEL,
                thread_ts="",
                persona_id="dev",
            )
        )

    @pytest.mark.asyncio
    async def test_once_per_interval(self, loop, dispatcher, clock):
        await loop.sweep()
        clock.advance(minutes(179))
        await loop.sweep()
        assert dispatcher.dispatch.await_count == 1

        clock.advance(minutes(2))
        await loop.sweep()
        assert dispatcher.dispatch.await_count == 2

    @pytest.mark.asyncio
    async def test_missing_checkout_is_skipped(self, engine, settings, dispatcher):
        loop = ProactiveLoop(
            engine, settings, job_dispatcher=dispatcher, path_exists=lambda path: False
        )
        await loop.sweep()
        dispatcher.dispatch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dispatch_failure_is_contained(self, loop, dispatcher, engine, thread_state, clock):
        dispatcher.dispatch.side_effect = RuntimeError("queue full")
        thread_state.mark_channel_activity(CHANNEL)
        clock.advance(minutes(21))

        assert await loop.sweep() == 1

    @pytest.mark.asyncio
    async def test_without_dispatcher(self, engine, settings):
        loop = ProactiveLoop(engine, settings, path_exists=lambda path: True)
        assert await loop.sweep() == 0


# ======================
# Lifecycle
# ======================


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_and_stop(self, engine, settings):
        waits = []

        async def fake_sleep(seconds):
            waits.append(seconds)
            await asyncio.sleep(0)

        loop = ProactiveLoop(
            engine, settings, path_exists=lambda path: False, sleep=fake_sleep,
            roadmap_loader=lambda path: [],
        )
        loop.start()
        for _ in range(5):
            await asyncio.sleep(0)

        assert loop.is_running
        assert waits and waits[0] == settings.proactive_sweep_seconds

        await loop.stop()
        assert not loop.is_running
        assert loop._task is None

    @pytest.mark.asyncio
    async def test_sweep_errors_do_not_stop_the_loop(self, engine, settings):
        engine.repository = MagicMock()
        engine.repository.get_active_personas = AsyncMock(side_effect=RuntimeError("db locked"))

        async def fake_sleep(seconds):
            await asyncio.sleep(0)

        loop = ProactiveLoop(engine, settings, path_exists=lambda path: False, sleep=fake_sleep)
        loop.start()
        for _ in range(10):
            await asyncio.sleep(0)

        assert engine.repository.get_active_personas.await_count >= 2
        await loop.stop()
