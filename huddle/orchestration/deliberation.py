"""
Deliberation engine.

Turns a trigger into a threaded, multi-round discussion among personas:
opening post, contribution rounds, then a lead decision that either ends
the discussion, asks for another round, or escalates to a human or the
board.

Concurrency model:
    - Concurrent starts for the same ``project:type:ref`` share one task.
    - Rounds and contributions of one discussion run under a per-discussion
      ``asyncio.Lock``; different discussions proceed independently. The
      lock is dropped once the discussion is no longer active.
    - A human posting in an active thread schedules a debounced resume task;
      a newer human message replaces a resume that has not started yet.

Usage:
    engine = DeliberationEngine(transport, repository, generator, settings)
    discussion = await engine.start_discussion(trigger)
"""

import asyncio
import os
import random
import re
from datetime import datetime
from typing import Awaitable, Callable, Optional, Sequence

from huddle.chat.thread_state import ThreadStateManager
from huddle.config.settings import AppSettings
from huddle.integrations.gh_cli import GhCli, GhCliError
from huddle.models.discussion import (
    Discussion,
    DiscussionStatus,
    DiscussionTrigger,
    PostedMessage,
    ThreadMessage,
    TriggerType,
)
from huddle.models.persona import Persona
from huddle.orchestration.collaborators import (
    BoardProviderFactory,
    ChatTransport,
    ContributionGenerator,
    DiscussionRepository,
    JobDispatcher,
)
from huddle.orchestration.consensus import ConsensusEvaluator, count_thread_replies
from huddle.orchestration.escalation import BoardEscalation
from huddle.orchestration.humanizer import HumanizerCadence, is_skip_message
from huddle.orchestration.prompts import (
    build_ad_hoc_reply_prompt,
    build_contribution_prompt,
    build_opening_message,
    build_proactive_prompt,
    format_thread_history,
    has_concrete_code_context,
)
from huddle.personas.memory import MemoryService, ReflectionContext
from huddle.personas.resolver import (
    find_dev,
    find_lead,
    get_participating_personas,
    select_follow_up_persona,
)
from huddle.personas.roadmap import RoadmapItem, compile_roadmap_for_persona, load_roadmap_items
from huddle.personas.soul import compile_soul
from huddle.utils.logging import discussion_log_context, get_logger
from huddle.utils.text import normalize_text
from huddle.utils.timestamps import utc_now

logger = get_logger(__name__)

ROUND_HISTORY_LIMIT = 10
PR_CONTEXT_MAX_CHARS = 5000
AD_HOC_MAX_TOKENS = 1024
RESUME_LINE = "Ok, picking this back up. Let me see where we landed."

_LEADING_NUMBER_RE = re.compile(r"^\s*(\d+)")


class DeliberationError(Exception):
    """A discussion cannot be started (no personas, no channel, no opening post)."""

    pass


class DiscussionNotFoundError(DeliberationError):
    """An operation referenced a discussion id the repository does not know."""

    def __init__(self, discussion_id: str):
        self.discussion_id = discussion_id
        super().__init__(f"Discussion '{discussion_id}' not found")


def discussion_start_key(trigger: DiscussionTrigger) -> str:
    return f"{trigger.project_path}:{trigger.type.value}:{trigger.ref}"


def project_slug(project_path: str) -> str:
    """Memory key for a project: the last segment of its path."""
    return os.path.basename(project_path.rstrip("/"))


def choose_round_contributors(
    personas: Sequence[Persona], lead: Optional[Persona]
) -> list[Persona]:
    """The lead sits out a round when at least two others can speak."""
    if lead is None:
        return list(personas)
    others = [p for p in personas if p.id != lead.id]
    return others if len(others) >= 2 else list(personas)


class DeliberationEngine:
    """
    Orchestrates deliberations over the collaborator protocols.

    Args:
        transport: Chat transport
        repository: Discussion and persona storage
        generator: Language-model boundary
        settings: Deliberation limits and channel defaults
        thread_state: Shared cooldown/activity state (a fresh one if omitted)
        board_factory: Per-project board resolution
        gh: gh CLI runner for PR diffs and issue closing
        job_dispatcher: Optional hook for sending PRs back through review
        rng: Random source for openers, delays and humanizer cadence
        sleep: Awaitable sleep (tests pass a no-op)
        clock: Current UTC time, used by the replay guard
        roadmap_loader: Reads roadmap items for a project path
        memory: Persona memory; prompts carry it and personas reflect after posting
    """

    def __init__(
        self,
        transport: ChatTransport,
        repository: DiscussionRepository,
        generator: ContributionGenerator,
        settings: AppSettings,
        thread_state: Optional[ThreadStateManager] = None,
        board_factory: Optional[BoardProviderFactory] = None,
        gh: Optional[GhCli] = None,
        job_dispatcher: Optional[JobDispatcher] = None,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = utc_now,
        roadmap_loader: Callable[[str], list[RoadmapItem]] = load_roadmap_items,
        memory: Optional[MemoryService] = None,
    ):
        self.transport = transport
        self.repository = repository
        self.generator = generator
        self.settings = settings
        self.thread_state = thread_state or ThreadStateManager()
        self.gh = gh or GhCli(settings.gh_binary, settings.gh_timeout_seconds)
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._clock = clock
        self._roadmap_loader = roadmap_loader
        self.memory = memory

        self.cadence = HumanizerCadence(self._rng)
        self.escalation = BoardEscalation(generator, board_factory, self.gh, self._post)
        self.consensus = ConsensusEvaluator(
            transport,
            repository,
            generator,
            self.escalation,
            self._post,
            self._pause,
            max_rounds=settings.max_rounds,
            max_agent_thread_replies=settings.max_agent_thread_replies,
            job_dispatcher=job_dispatcher,
        )

        self._in_flight_starts: dict[str, asyncio.Task] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._resume_tasks: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()

    # ======================
    # Shared helpers
    # ======================

    def _lock_for(self, discussion_id: str) -> asyncio.Lock:
        if discussion_id not in self._locks:
            self._locks[discussion_id] = asyncio.Lock()
        return self._locks[discussion_id]

    def _release_lock(self, discussion_id: str) -> None:
        """Drop a finished discussion's lock unless someone is still holding it."""
        lock = self._locks.get(discussion_id)
        if lock is not None and not lock.locked():
            del self._locks[discussion_id]

    async def _release_if_finished(self, discussion_id: str) -> None:
        current = await self.repository.get_discussion(discussion_id)
        if current is None or not current.is_active:
            self._release_lock(discussion_id)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _pause(self) -> None:
        await self._sleep(
            self._rng.uniform(
                self.settings.human_delay_min_seconds,
                self.settings.human_delay_max_seconds,
            )
        )

    async def _post(
        self,
        channel: str,
        text: str,
        persona: Persona,
        thread_ts: Optional[str] = None,
    ) -> Optional[PostedMessage]:
        """Post as ``persona`` and record cooldown and channel activity; None on failure."""
        try:
            posted = await self.transport.post_as_agent(channel, text, persona, thread_ts)
        except Exception as e:
            logger.warning("chat_post_failed", channel=channel, persona=persona.name, error=str(e))
            return None
        self.thread_state.mark_persona_reply(channel, thread_ts or posted.ts, persona.id)
        self.thread_state.mark_channel_activity(channel)
        return posted

    async def post_message(
        self,
        channel: str,
        text: str,
        persona: Persona,
        thread_ts: Optional[str] = None,
    ) -> Optional[PostedMessage]:
        """Post a fixed line as ``persona`` (acknowledgements and notices)."""
        return await self._post(channel, text, persona, thread_ts)

    async def _history(self, channel: str, thread_ts: str) -> list[ThreadMessage]:
        try:
            return await self.transport.get_thread_history(
                channel, thread_ts, ROUND_HISTORY_LIMIT
            )
        except Exception as e:
            logger.warning("thread_history_failed", channel=channel, error=str(e))
            return []

    async def _require_discussion(self, discussion_id: str) -> Discussion:
        discussion = await self.repository.get_discussion(discussion_id)
        if discussion is None:
            raise DiscussionNotFoundError(discussion_id)
        return discussion

    def _load_roadmap(self, project_path: str) -> list[RoadmapItem]:
        try:
            return self._roadmap_loader(project_path)
        except Exception as e:
            logger.warning("roadmap_load_failed", project_path=project_path, error=str(e))
            return []

    async def _generate(
        self,
        persona: Persona,
        prompt: str,
        max_tokens: Optional[int] = None,
        slug: Optional[str] = None,
    ) -> str:
        memory = await self._load_memory(persona, slug)
        try:
            return await self.generator.generate(
                compile_soul(persona, memory), prompt, persona=persona, max_tokens=max_tokens
            )
        except Exception as e:
            logger.warning("contribution_failed", persona=persona.name, error=str(e))
            return ""

    # ======================
    # Persona memory
    # ======================

    async def _load_memory(self, persona: Persona, slug: Optional[str]) -> str:
        if self.memory is None or not slug:
            return ""
        try:
            return await self.memory.get_memory(persona.name, slug)
        except Exception as e:
            logger.warning("memory_read_failed", persona=persona.name, project=slug, error=str(e))
            return ""

    def _memory_caller(self, persona: Persona):
        async def call(system: str, prompt: str) -> str:
            try:
                return await self.generator.generate(system, prompt, persona=persona)
            except Exception as e:
                logger.warning("memory_generation_failed", persona=persona.name, error=str(e))
                return ""

        return call

    def _reflect(
        self,
        persona: Persona,
        slug: Optional[str],
        trigger_type: str,
        outcome: str,
        summary: str,
    ) -> None:
        """Reflect on a post in the background; failures are logged, never raised."""
        if self.memory is None or not slug:
            return
        context = ReflectionContext(trigger_type=trigger_type, outcome=outcome, summary=summary[:200])
        self._spawn(self._run_reflection(persona, slug, context))

    async def _run_reflection(self, persona: Persona, slug: str, context: ReflectionContext) -> None:
        try:
            await self.memory.reflect(persona, slug, context, self._memory_caller(persona))
        except Exception as e:
            logger.warning("memory_reflect_failed", persona=persona.name, project=slug, error=str(e))

    def _finalize(self, channel: str, thread_ts: str, persona: Persona, raw: str, seen: set[str]) -> str:
        """Humanized text ready to post, or "" for SKIP, empty and duplicate replies."""
        if not raw or is_skip_message(raw):
            return ""
        final = self.cadence.humanize_for_post(f"{channel}:{thread_ts}:{persona.id}", raw)
        if not final or is_skip_message(final):
            return ""
        normalized = normalize_text(final)
        if not normalized or normalized in seen:
            return ""
        return final

    # ======================
    # Starting discussions
    # ======================

    async def start_discussion(self, trigger: DiscussionTrigger) -> Discussion:
        """
        Start (or return the existing) discussion for a trigger.

        Raises:
            DeliberationError: No active personas, or no channel to post in
        """
        key = discussion_start_key(trigger)
        existing = self._in_flight_starts.get(key)
        if existing is not None:
            return await existing

        task = asyncio.ensure_future(self._start_discussion(trigger))
        self._in_flight_starts[key] = task
        try:
            return await task
        finally:
            if self._in_flight_starts.get(key) is task:
                del self._in_flight_starts[key]

    async def _start_discussion(self, trigger: DiscussionTrigger) -> Discussion:
        latest = await self.repository.get_latest_by_trigger(
            trigger.project_path, trigger.type, trigger.ref
        )
        if latest is not None:
            age = (self._clock() - latest.updated_at).total_seconds()
            if latest.is_active or age < self.settings.discussion_replay_guard_seconds:
                logger.info(
                    "discussion_replay_suppressed",
                    discussion_id=latest.id,
                    status=latest.status.value,
                    ref=trigger.ref,
                )
                return latest

        personas = await self.repository.get_active_personas()
        participants = get_participating_personas(trigger.type, personas)
        if not participants:
            raise DeliberationError("No active agent personas found")

        resolved = trigger.model_copy()
        if resolved.type == TriggerType.PRD_KICKOFF and not resolved.channel_id:
            project = self.settings.find_project_by_path(resolved.project_path)
            if project is not None and project.slack_channel_id:
                resolved.channel_id = project.slack_channel_id

        if resolved.type == TriggerType.PR_REVIEW and not has_concrete_code_context(resolved.context):
            excerpt = await self.load_pr_diff_excerpt(resolved.project_path, resolved.ref)
            if excerpt:
                resolved.context = f"{resolved.context}\n\n{excerpt}"[:PR_CONTEXT_MAX_CHARS]

        channel = resolved.channel_id or self.settings.channel_for_trigger(resolved.type)
        if not channel:
            raise DeliberationError(
                f"No Slack channel configured for trigger type: {resolved.type.value}"
            )

        opener = find_dev(participants) or participants[0]
        opening_text = resolved.opening_message or build_opening_message(resolved, self._rng)

        if resolved.thread_ts:
            thread_ts = resolved.thread_ts
            initial_participants: list[str] = []
        else:
            posted = await self._post(channel, opening_text, opener)
            if posted is None:
                raise DeliberationError(f"Could not post the opening message to {channel}")
            await self._pause()
            thread_ts = posted.ts
            initial_participants = [opener.id]

        discussion = await self.repository.create_discussion(
            project_path=resolved.project_path,
            trigger_type=resolved.type,
            trigger_ref=resolved.ref,
            channel_id=channel,
            thread_ts=thread_ts,
            round=1,
            participants=initial_participants,
        )
        logger.info(
            "discussion_started",
            discussion_id=discussion.id,
            trigger=resolved.type.value,
            ref=resolved.ref,
            channel=channel,
            participants=[p.name for p in participants],
        )

        reviewers = (
            participants if resolved.thread_ts else [p for p in participants if p.id != opener.id]
        )
        async with self._lock_for(discussion.id):
            with discussion_log_context(discussion.id, trigger=resolved.type.value):
                await self._run_contribution_round(
                    discussion.id, reviewers, resolved, opening_text
                )
                await self.consensus.evaluate(
                    discussion.id, resolved, self._run_contribution_round
                )
        await self._release_if_finished(discussion.id)

        return await self.repository.get_discussion(discussion.id) or discussion

    async def load_pr_diff_excerpt(self, project_path: str, ref: str) -> str:
        """Fenced first lines of the PR diff, or "" for non-numeric refs and CLI failures."""
        match = _LEADING_NUMBER_RE.match(ref)
        if not match:
            return ""
        try:
            excerpt = await self.gh.get_pr_diff_excerpt(match.group(1), cwd=project_path)
        except GhCliError as e:
            logger.warning("pr_diff_fetch_failed", ref=ref, error=str(e))
            return ""
        if not excerpt:
            return ""
        return f"PR diff excerpt (first 160 lines):\n```diff\n{excerpt}\n```"

    # ======================
    # Contribution rounds
    # ======================

    def _order_speakers(
        self,
        personas: Sequence[Persona],
        lead: Optional[Persona],
        discussion: Discussion,
        feedback: str,
        max_count: int,
    ) -> list[Persona]:
        candidates = choose_round_contributors(personas, lead)
        if not candidates or max_count <= 0:
            return []

        if discussion.round > 1 and feedback:
            chosen = select_follow_up_persona(candidates[0], candidates, feedback)
            candidates = [chosen] + [p for p in candidates if p.id != chosen.id]

        ready, cooling = [], []
        for persona in candidates:
            on_cooldown = self.thread_state.is_persona_on_cooldown(
                discussion.channel_id, discussion.thread_ts, persona.id
            )
            (cooling if on_cooldown else ready).append(persona)
        return (ready + cooling)[:max_count]

    async def _run_contribution_round(
        self,
        discussion_id: str,
        personas: Sequence[Persona],
        trigger: DiscussionTrigger,
        current_context: str,
    ) -> None:
        """
        One round of contributions. Callers hold the discussion's lock.

        ``current_context`` is the opener or the lead's feedback; it stands
        in for the thread when history cannot be read.
        """
        discussion = await self.repository.get_discussion(discussion_id)
        if discussion is None:
            return

        channel, thread_ts = discussion.channel_id, discussion.thread_ts
        history = await self._history(channel, thread_ts)
        history_text = format_thread_history(history) or current_context
        seen = {normalize_text(m.text) for m in history} - {""}

        budget = max(
            0,
            self.settings.max_agent_thread_replies - count_thread_replies(len(history)) - 1,
        )
        if budget <= 0:
            logger.info("round_skipped_reply_budget", discussion_id=discussion_id)
            return

        roster = await self.repository.get_active_personas()
        speakers = self._order_speakers(
            personas,
            find_lead(roster),
            discussion,
            current_context,
            min(self.settings.max_contributions_per_round, budget),
        )
        roadmap_items = self._load_roadmap(trigger.project_path)
        slug = project_slug(trigger.project_path)

        posted_count = 0
        for persona in speakers:
            if posted_count >= budget:
                break
            current = await self.repository.get_discussion(discussion_id)
            if current is None or not current.is_active:
                break

            prompt = build_contribution_prompt(
                persona,
                trigger,
                history_text,
                current.round,
                max_rounds=self.settings.max_rounds,
                roadmap_context=compile_roadmap_for_persona(persona, roadmap_items),
                teammates=roster,
            )
            raw = await self._generate(persona, prompt, slug=slug)
            final = self._finalize(channel, thread_ts, persona, raw, seen)
            if not final:
                continue

            posted = await self._post(channel, final, persona, thread_ts)
            if posted is None:
                continue
            await self.repository.add_participant(discussion_id, persona.id)
            seen.add(normalize_text(final))
            posted_count += 1
            logger.info(
                "agent_contributed",
                discussion_id=discussion_id,
                persona=persona.name,
                round=current.round,
                trigger=trigger.type.value,
            )
            self._reflect(persona, slug, trigger.type.value, "contributed", final)

            history.append(ThreadMessage(ts=posted.ts, text=final, username=persona.name))
            history_text = format_thread_history(history) or history_text
            await self._pause()

    async def contribute_as_agent(self, discussion_id: str, persona: Persona) -> str:
        """
        One extra contribution from ``persona`` in an active discussion.

        Returns:
            The posted text, or "" when nothing was posted

        Raises:
            DiscussionNotFoundError: Unknown discussion id
        """
        discussion = await self._require_discussion(discussion_id)
        if not discussion.is_active:
            return ""

        async with self._lock_for(discussion_id):
            posted = await self._contribute_locked(discussion_id, persona)
        await self._release_if_finished(discussion_id)
        return posted

    async def _contribute_locked(self, discussion_id: str, persona: Persona) -> str:
        discussion = await self._require_discussion(discussion_id)
        if not discussion.is_active:
            return ""
        channel, thread_ts = discussion.channel_id, discussion.thread_ts
        history = await self._history(channel, thread_ts)
        history_text = format_thread_history(history)
        seen = {normalize_text(m.text) for m in history} - {""}

        trigger = DiscussionTrigger(
            type=discussion.trigger_type,
            project_path=discussion.project_path,
            ref=discussion.trigger_ref,
            context=history_text,
        )
        roster = await self.repository.get_active_personas()
        prompt = build_contribution_prompt(
            persona,
            trigger,
            history_text,
            discussion.round,
            max_rounds=self.settings.max_rounds,
            teammates=roster,
        )
        slug = project_slug(discussion.project_path)
        raw = await self._generate(persona, prompt, slug=slug)
        final = self._finalize(channel, thread_ts, persona, raw, seen)
        if not final:
            return ""

        if await self._post(channel, final, persona, thread_ts) is None:
            return ""
        await self.repository.add_participant(discussion_id, persona.id)
        self._reflect(persona, slug, discussion.trigger_type.value, "contributed", final)
        await self._pause()
        return final

    # ======================
    # Humans in the thread
    # ======================

    async def handle_human_message(
        self, channel: str, thread_ts: str, text: str, user_id: Optional[str]
    ) -> bool:
        """
        Debounce a human post in an active discussion thread.

        After a quiet period the lead posts a pick-up line and re-evaluates
        consensus. A newer human message restarts the wait.

        Returns:
            True if the thread belongs to an active discussion
        """
        discussion = await self.repository.find_active_by_thread(channel, thread_ts)
        if discussion is None:
            return False

        pending = self._resume_tasks.pop(discussion.id, None)
        if pending is not None and not pending.done():
            pending.cancel()

        task = asyncio.create_task(self._resume_after_human(discussion))
        self._resume_tasks[discussion.id] = task
        logger.info(
            "human_message_in_discussion",
            discussion_id=discussion.id,
            user_id=user_id,
            chars=len(text),
        )
        return True

    async def _resume_after_human(self, discussion: Discussion) -> None:
        await self._sleep(self.settings.discussion_resume_delay_seconds)
        # Past the debounce window: later messages schedule a new resume instead of cancelling this one.
        if self._resume_tasks.get(discussion.id) is asyncio.current_task():
            del self._resume_tasks[discussion.id]

        personas = await self.repository.get_active_personas()
        lead = find_lead(personas) or (personas[0] if personas else None)
        if lead is None:
            return

        async with self._lock_for(discussion.id):
            current = await self.repository.get_discussion(discussion.id)
            if current is not None and current.is_active:
                await self._post(current.channel_id, RESUME_LINE, lead, current.thread_ts)
                await self._pause()
                trigger = DiscussionTrigger(
                    type=current.trigger_type,
                    project_path=current.project_path,
                    ref=current.trigger_ref,
                    context="",
                )
                await self.consensus.evaluate(current.id, trigger, self._run_contribution_round)
        await self._release_if_finished(discussion.id)

    # ======================
    # Ad-hoc replies
    # ======================

    async def reply_as_agent(
        self,
        channel: str,
        thread_ts: str,
        text: str,
        persona: Persona,
        project_context: str = "",
        slug: Optional[str] = None,
    ) -> str:
        """
        Reply as ``persona`` in any thread, no discussion required.

        ``slug`` names the project whose memory the persona speaks with.

        Returns:
            The posted text, or "" when nothing was posted
        """
        history = await self._history(channel, thread_ts)
        seen = {normalize_text(m.text) for m in history} - {""}
        roster = await self.repository.get_active_personas()

        prompt = build_ad_hoc_reply_prompt(
            persona,
            text,
            history_text=format_thread_history(history),
            project_context=project_context,
            teammates=roster,
        )
        raw = await self._generate(persona, prompt, max_tokens=AD_HOC_MAX_TOKENS, slug=slug)
        final = self._finalize(channel, thread_ts, persona, raw, seen)
        if not final:
            return ""
        if await self._post(channel, final, persona, thread_ts) is None:
            return ""
        self._reflect(
            persona,
            slug,
            "slack_message",
            "replied",
            f'Ad-hoc Slack reply in channel {channel}: "{text[:160]}"',
        )
        return final

    async def post_proactive_message(
        self,
        channel: str,
        persona: Persona,
        project_context: str = "",
        roadmap_context: str = "",
        slug: Optional[str] = None,
    ) -> str:
        """
        Unprompted top-level message from ``persona`` in a quiet channel.

        Returns:
            The posted text, or "" when the persona had nothing to say
        """
        roster = await self.repository.get_active_personas()
        prompt = build_proactive_prompt(
            persona,
            project_context=project_context,
            roadmap_context=roadmap_context,
            teammates=roster,
        )
        raw = await self._generate(persona, prompt, slug=slug)
        if not raw or is_skip_message(raw):
            return ""
        final = self.cadence.humanize_for_post(f"{channel}:proactive:{persona.id}", raw)
        if not final or is_skip_message(final):
            return ""
        if await self._post(channel, final, persona) is None:
            return ""
        logger.info("proactive_message_posted", persona=persona.name, channel=channel, project=slug)
        self._reflect(persona, slug, TriggerType.CODE_WATCH.value, "proactive_observation", final)
        return final

    # ======================
    # Scanner, audit, lifecycle
    # ======================

    async def analyze_code_candidate(
        self, file_context: str, signal: str, location: str
    ) -> Optional[str]:
        """The implementer's Slack-ready take on a scanner finding, or None to skip it."""
        personas = await self.repository.get_active_personas()
        return await self.escalation.analyze_code_candidate(
            personas, file_context, signal, location
        )

    async def handle_audit_report(
        self, report: str, project_name: str, project_path: str, channel: str
    ) -> None:
        personas = await self.repository.get_active_personas()
        await self.escalation.handle_audit_report(
            personas, report, project_name, project_path, channel
        )

    async def close_discussion(self, discussion_id: str) -> Discussion:
        """
        Mark a discussion closed, keeping its consensus result.

        Raises:
            DiscussionNotFoundError: Unknown discussion id
        """
        discussion = await self._require_discussion(discussion_id)
        pending = self._resume_tasks.pop(discussion_id, None)
        if pending is not None and not pending.done():
            pending.cancel()

        if discussion.status != DiscussionStatus.CLOSED:
            await self.repository.update_status(
                discussion_id, DiscussionStatus.CLOSED, discussion.consensus_result
            )
            logger.info("discussion_closed", discussion_id=discussion_id)
        self._release_lock(discussion_id)
        return await self._require_discussion(discussion_id)

    async def shutdown(self) -> None:
        """Cancel pending human-resume and reflection tasks."""
        tasks = [task for task in self._resume_tasks.values() if not task.done()]
        tasks += [task for task in self._background if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._resume_tasks.clear()
