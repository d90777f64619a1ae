"""
Inbound chat message routing.

Decides, for each human message the Slack Events API delivers, whether it
is a job command, an issue to pick up or triage, a message for a specific
persona, part of a running discussion, or ambient chatter, and hands it to
the deliberation engine accordingly.
"""

import asyncio
import re
from typing import Any, Awaitable, Callable, Mapping, Optional, Sequence

from huddle.chat.message_parser import MessageParser
from huddle.config.settings import AppSettings
from huddle.integrations.context_fetcher import ContextFetcher
from huddle.models.board import BoardColumn
from huddle.models.chat import ChatProvider, InboundEvent, JobName, JobRequest
from huddle.models.discussion import DiscussionTrigger, TriggerType
from huddle.models.persona import Persona
from huddle.models.project import ProjectConfig
from huddle.orchestration.collaborators import BoardProviderFactory, JobDispatch, JobDispatcher
from huddle.orchestration.deliberation import DeliberationEngine, project_slug
from huddle.personas.resolver import (
    find_dev,
    find_lead,
    find_qa,
    resolve_mentioned_personas,
    resolve_personas_by_plain_name,
    select_follow_up_persona,
)
from huddle.utils.logging import get_logger
from huddle.utils.text import collapse_whitespace, normalize_project_ref, strip_slack_user_mentions

logger = get_logger(__name__)

RESPONSE_DELAY_MIN_MS = 700
RESPONSE_DELAY_MAX_MS = 3400
REACTION_DELAY_MIN_MS = 180
REACTION_DELAY_MAX_MS = 1200
PIGGYBACK_DELAY_MIN_MS = 4000
PIGGYBACK_DELAY_MAX_MS = 15000
HUMAN_REACTION_PROBABILITY = 0.65
RANDOM_REACTION_PROBABILITY = 0.25
PIGGYBACK_REPLY_PROBABILITY = 0.4
HISTORY_RECOVERY_LIMIT = 50
PROMPT_PREVIEW_CHARS = 120

_BOT_ADDRESS_RE = re.compile(r"^(huddle|hud)\b")
_TEAM_REQUEST_RE = re.compile(r"\b(can someone|someone|anyone|please|need)\b", re.IGNORECASE)
_JOB_COMMAND_START_RE = re.compile(r"^(run|review|qa)\b", re.IGNORECASE)
_PROVIDER_COMMAND_START_RE = re.compile(
    r"^(?:can\s+(?:you|someone|anyone)\s+)?(?:please\s+)?"
    r"(?:(?:run|use|invoke|trigger|ask)\s+)?(?:claude|codex)\b",
    re.IGNORECASE,
)


# ======================
# Project resolution
# ======================

def resolve_project_by_hint(
    projects: Sequence[ProjectConfig], hint: str
) -> Optional[ProjectConfig]:
    """
    Match a free-text project hint.

    Tries exact name, exact path basename, then substring matches in both
    directions, in that order.
    """
    wanted = normalize_project_ref(hint)
    if not wanted:
        return None

    def name_of(project: ProjectConfig) -> str:
        return normalize_project_ref(project.name)

    def base_of(project: ProjectConfig) -> str:
        return normalize_project_ref(project.basename)

    checks: list[Callable[[ProjectConfig], bool]] = [
        lambda p: name_of(p) == wanted,
        lambda p: base_of(p) == wanted,
        lambda p: wanted in name_of(p),
        lambda p: wanted in base_of(p),
        lambda p: bool(name_of(p)) and name_of(p) in wanted,
        lambda p: bool(base_of(p)) and base_of(p) in wanted,
    ]
    for check in checks:
        match = next((p for p in projects if check(p)), None)
        if match is not None:
            return match
    return None


def resolve_target_project(
    channel: str,
    projects: Sequence[ProjectConfig],
    project_hint: Optional[str] = None,
) -> Optional[ProjectConfig]:
    """Hint first, then the channel's own project, then the only project."""
    if project_hint:
        return resolve_project_by_hint(projects, project_hint)
    by_channel = next((p for p in projects if p.slack_channel_id == channel), None)
    if by_channel is not None:
        return by_channel
    if len(projects) == 1:
        return projects[0]
    return None


def build_project_context(channel: str, projects: Sequence[ProjectConfig]) -> str:
    if not projects:
        return ""
    in_channel = next((p for p in projects if p.slack_channel_id == channel), None)
    if in_channel is not None:
        return f"Current channel project: {in_channel.name}."
    return f"Registered projects: {', '.join(p.name for p in projects)}."


def reaction_candidates_for_persona(persona: Persona) -> list[str]:
    """Emoji a persona plausibly reacts with, by role."""
    role = persona.role.lower()
    if "security" in role:
        return ["eyes", "thinking_face", "shield", "thumbsup"]
    if "qa" in role or "quality" in role:
        return ["test_tube", "mag", "thinking_face", "thumbsup"]
    if "lead" in role or "architect" in role:
        return ["thinking_face", "thumbsup", "memo", "eyes"]
    if "implementer" in role or "developer" in role:
        return ["wrench", "hammer_and_wrench", "thumbsup", "eyes"]
    return ["eyes", "thinking_face", "thumbsup", "wave"]


def build_persona_intro(persona: Persona) -> str:
    how_to_tag = (
        "To reach me: mention `@huddle` in any message and include my name, "
        f"e.g. `@huddle {persona.name}, what do you think about this PR?`"
    )
    who_i_am = persona.soul.who_i_am.strip()
    if who_i_am:
        return f"{who_i_am}\n\n{how_to_tag}"
    return f"*{persona.name}* ({persona.role}).\n\n{how_to_tag}"


class InteractionRouter:
    """
    Routes Slack events to jobs, discussions and persona replies.

    Args:
        engine: Deliberation engine (its thread state is shared)
        settings: Projects and bot identity
        parser: Message parser
        context_fetcher: Link and GitHub context enrichment
        board_factory: Per-project board for issue pickups
        job_dispatcher: Optional job runner; without one jobs are acknowledged only
        bot_user_id: Slack user id of the bot, used to filter self events
        sleep: Awaitable sleep (tests pass a no-op)
        reaction_probability: Chance the replying persona reacts to the human message first
        random_reaction_probability: Chance each idle persona reacts to an unrouted message
        piggyback_probability: Chance a second persona chimes in after an ad-hoc reply
    """

    def __init__(
        self,
        engine: DeliberationEngine,
        settings: AppSettings,
        parser: Optional[MessageParser] = None,
        context_fetcher: Optional[ContextFetcher] = None,
        board_factory: Optional[BoardProviderFactory] = None,
        job_dispatcher: Optional[JobDispatcher] = None,
        bot_user_id: Optional[str] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        reaction_probability: float = HUMAN_REACTION_PROBABILITY,
        random_reaction_probability: float = RANDOM_REACTION_PROBABILITY,
        piggyback_probability: float = PIGGYBACK_REPLY_PROBABILITY,
    ):
        self.engine = engine
        self.settings = settings
        self.parser = parser or MessageParser()
        self.context_fetcher = context_fetcher or ContextFetcher(
            gh=engine.gh,
            url_timeout_seconds=settings.url_fetch_timeout_seconds,
            max_urls=settings.url_fetch_max_urls,
            max_github_items=settings.gh_max_urls,
        )
        self.board_factory = board_factory
        self.job_dispatcher = job_dispatcher
        self.bot_user_id = bot_user_id or settings.slack_bot_user_id
        self._sleep = sleep
        self.reaction_probability = reaction_probability
        self.random_reaction_probability = random_reaction_probability
        self.piggyback_probability = piggyback_probability
        self._background: set[asyncio.Task] = set()

    @property
    def thread_state(self):
        return self.engine.thread_state

    @property
    def projects(self) -> list[ProjectConfig]:
        return list(self.settings.projects)

    # ======================
    # Entry point
    # ======================

    async def handle_events_payload(self, payload: Mapping[str, Any]) -> bool:
        """
        Process one Events API payload.

        Returns:
            True if the event passed the filters and was routed
        """
        event = self.parser.extract_inbound_event(payload)
        if event is None:
            return False
        if event.type not in ("message", "app_mention"):
            return False

        if self.parser.should_ignore_inbound_slack_event(event, self.bot_user_id):
            logger.debug(
                "inbound_event_ignored",
                type=event.type,
                subtype=event.subtype,
                channel=event.channel,
                bot_id=event.bot_id,
            )
            return False

        # Direct bot mentions also arrive as app_mention; the message copy is dropped.
        if (
            event.type == "message"
            and self.bot_user_id
            and f"<@{self.bot_user_id}>" in (event.text or "")
        ):
            logger.debug("mirrored_mention_ignored", channel=event.channel, ts=event.ts)
            return False

        try:
            await self.handle_inbound_message(event)
        except Exception as e:
            logger.warning(
                "inbound_message_failed",
                channel=event.channel,
                ts=event.ts,
                error=str(e),
                exc_info=True,
            )
        return True

    async def handle_inbound_message(self, event: InboundEvent) -> None:
        channel = event.channel or ""
        ts = event.ts or ""
        thread_ts = event.thread_ts or ts
        text = event.text or ""

        self.thread_state.mark_channel_activity(channel)
        message_key = self.parser.build_inbound_message_key(channel, ts, event.type)
        if not self.thread_state.remember_message_key(message_key):
            logger.info("duplicate_inbound_event", key=message_key)
            return

        personas = await self.engine.repository.get_active_personas()
        full_context = await self._build_context(channel, text)

        if await self._dispatch_provider_request(event, channel, thread_ts, personas):
            return
        if await self._dispatch_job_request(event, channel, thread_ts, personas):
            return
        if await self._dispatch_issue_pickup(event, channel, thread_ts, personas):
            return
        if not event.thread_ts and self._start_issue_review(channel, ts, text):
            return

        mentioned = resolve_mentioned_personas(text, personas)
        if not mentioned:
            mentioned = resolve_personas_by_plain_name(text, personas)
        if mentioned:
            await self._reply_to_mentions(
                channel, thread_ts, ts, text, mentioned, personas, full_context
            )
            return

        if await self.engine.handle_human_message(channel, thread_ts, text, event.user):
            return

        remembered = self.thread_state.get_remembered_ad_hoc_persona(channel, thread_ts, personas)
        if remembered is None and event.thread_ts:
            remembered = await self._recover_persona_from_history(channel, thread_ts, personas)
        if remembered is not None:
            follow_up = select_follow_up_persona(remembered, personas, text)
            if follow_up.id != remembered.id:
                logger.info(
                    "ad_hoc_thread_handoff",
                    from_persona=remembered.name,
                    to_persona=follow_up.name,
                )
            await self._reply_and_follow(channel, thread_ts, ts, text, follow_up, personas, full_context)
            self._spawn_piggyback(channel, thread_ts, text, personas, full_context, follow_up.id)
            return

        if self.parser.is_ambient_team_message(text):
            await self._engage_multiple(channel, thread_ts, ts, text, personas, full_context)
            return

        if event.type != "app_mention":
            for persona in personas:
                if not self.thread_state.is_persona_on_cooldown(
                    channel, thread_ts, persona.id
                ) and self.thread_state.random_chance(self.random_reaction_probability):
                    self._spawn(self._maybe_react_to_human_message(channel, ts, persona))

        persona = self.thread_state.pick_random_persona(personas, channel, thread_ts)
        if persona is None:
            logger.info("no_persona_available", channel=channel)
            return
        await self._reply_and_follow(channel, thread_ts, ts, text, persona, personas, full_context)
        self._spawn_piggyback(channel, thread_ts, text, personas, full_context, persona.id)

    # ======================
    # Context
    # ======================

    async def _build_context(self, channel: str, text: str) -> str:
        context = build_project_context(channel, self.projects)

        github_urls = self.parser.extract_github_issue_urls(text)
        generic_urls = self.parser.extract_generic_urls(text)
        if github_urls:
            github_context = await self.context_fetcher.fetch_github_issue_context(github_urls)
            if github_context:
                context += f"\n\nReferenced GitHub content:\n{github_context}"
        if generic_urls:
            url_context = await self.context_fetcher.fetch_url_summaries(generic_urls)
            if url_context:
                context += f"\n\nReferenced links:\n{url_context}"
        return context

    def is_message_addressed_to_bot(self, event: InboundEvent) -> bool:
        if event.type == "app_mention":
            return True
        text = self.parser.normalize_for_parsing(strip_slack_user_mentions(event.text or ""))
        return bool(_BOT_ADDRESS_RE.match(text))

    def _normalized(self, event: InboundEvent) -> str:
        return self.parser.normalize_for_parsing(strip_slack_user_mentions(event.text or ""))

    # ======================
    # Posting helpers
    # ======================

    async def _response_delay(self) -> None:
        delay_ms = self.thread_state.random_int(RESPONSE_DELAY_MIN_MS, RESPONSE_DELAY_MAX_MS)
        await self._sleep(delay_ms / 1000)

    async def _ack(self, channel: str, thread_ts: str, persona: Persona, text: str) -> None:
        await self.engine.post_message(channel, text, persona, thread_ts)

    async def _ask_which_project(self, channel: str, thread_ts: str, persona: Persona) -> None:
        names = ", ".join(p.name for p in self.projects) or "(none registered)"
        await self._ack(channel, thread_ts, persona, f"Which project? Registered: {names}.")

    async def _dispatch(self, request: JobDispatch) -> None:
        if self.job_dispatcher is None:
            logger.info("job_dispatch_skipped", job=request.job, project_path=request.project_path)
            return
        try:
            await self.job_dispatcher.dispatch(request)
        except Exception as e:
            logger.warning("job_dispatch_failed", job=request.job, error=str(e))

    # ======================
    # Commands
    # ======================

    async def _dispatch_provider_request(
        self,
        event: InboundEvent,
        channel: str,
        thread_ts: str,
        personas: Sequence[Persona],
    ) -> bool:
        request = self.parser.parse_slack_provider_request(event.text or "")
        if request is None:
            return False
        if not self.is_message_addressed_to_bot(event) and not _PROVIDER_COMMAND_START_RE.match(
            self._normalized(event)
        ):
            return False

        persona = find_dev(personas) or self.thread_state.pick_random_persona(
            personas, channel, thread_ts
        )
        if persona is None:
            return False

        project = resolve_target_project(channel, self.projects, request.project_hint)
        if project is None:
            await self._ask_which_project(channel, thread_ts, persona)
            return True

        label = "Claude" if request.provider == ChatProvider.CLAUDE else "Codex"
        prompt = collapse_whitespace(request.prompt)
        preview = (
            f"{prompt[: PROMPT_PREVIEW_CHARS - 3]}..." if len(prompt) > PROMPT_PREVIEW_CHARS else prompt
        )
        on_project = f" on {project.name}" if request.project_hint else ""

        await self._apply_human_response_timing(channel, event.ts or "", persona)
        await self._ack(channel, thread_ts, persona, f'Running {label} directly{on_project}: "{preview}"')
        self.thread_state.remember_ad_hoc_thread_persona(channel, thread_ts, persona.id)
        logger.info("provider_request_routed", provider=label, persona=persona.name, project=project.name)

        await self._dispatch(
            JobDispatch(
                job="provider",
                project_path=project.path,
                channel=channel,
                thread_ts=thread_ts,
                persona_id=persona.id,
                provider=request.provider.value,
                prompt=request.prompt,
            )
        )
        return True

    def _persona_for_job(
        self, request: JobRequest, personas: Sequence[Persona], channel: str, thread_ts: str
    ) -> Optional[Persona]:
        by_job = {
            JobName.RUN: find_dev,
            JobName.QA: find_qa,
            JobName.REVIEW: find_lead,
        }
        persona = by_job[request.job](personas)
        return persona or self.thread_state.pick_random_persona(personas, channel, thread_ts)

    async def _dispatch_job_request(
        self,
        event: InboundEvent,
        channel: str,
        thread_ts: str,
        personas: Sequence[Persona],
    ) -> bool:
        request = self.parser.parse_slack_job_request(event.text or "")
        if request is None:
            return False

        normalized = self._normalized(event)
        if not (
            self.is_message_addressed_to_bot(event)
            or request.pr_number
            or request.fix_conflicts
            or _TEAM_REQUEST_RE.search(normalized)
            or _JOB_COMMAND_START_RE.match(normalized)
        ):
            return False

        persona = self._persona_for_job(request, personas, channel, thread_ts)
        if persona is None:
            return False

        project = resolve_target_project(channel, self.projects, request.project_hint)
        if project is None:
            await self._ask_which_project(channel, thread_ts, persona)
            return True

        pr = request.pr_number
        if request.job == JobName.REVIEW:
            plan = (
                f"On it{f', PR #{pr}' if pr else ''}"
                f"{', including the conflicts' if request.fix_conflicts else ''}."
            )
        elif request.job == JobName.QA:
            plan = f"Running QA{f' on #{pr}' if pr else ''}."
        else:
            plan = f"Starting the run{f' for #{pr}' if pr else ''}."

        await self._apply_human_response_timing(channel, event.ts or "", persona)
        await self._ack(channel, thread_ts, persona, plan)
        self.thread_state.remember_ad_hoc_thread_persona(channel, thread_ts, persona.id)
        logger.info(
            "job_request_routed",
            job=request.job.value,
            persona=persona.name,
            project=project.name,
            pr_number=pr,
            fix_conflicts=request.fix_conflicts,
        )

        await self._dispatch(
            JobDispatch(
                job=request.job.value,
                project_path=project.path,
                channel=channel,
                thread_ts=thread_ts,
                persona_id=persona.id,
                pr_number=pr,
                fix_conflicts=request.fix_conflicts,
            )
        )
        return True

    async def _dispatch_issue_pickup(
        self,
        event: InboundEvent,
        channel: str,
        thread_ts: str,
        personas: Sequence[Persona],
    ) -> bool:
        request = self.parser.parse_slack_issue_pickup_request(event.text or "")
        if request is None:
            return False
        if not self.is_message_addressed_to_bot(event) and not _TEAM_REQUEST_RE.search(
            self._normalized(event)
        ):
            return False

        persona = find_dev(personas) or self.thread_state.pick_random_persona(
            personas, channel, thread_ts
        )
        if persona is None:
            return False

        project = resolve_target_project(channel, self.projects, request.repo_hint)
        if project is None:
            await self._ask_which_project(channel, thread_ts, persona)
            return True

        await self._apply_human_response_timing(channel, event.ts or "", persona)
        await self._ack(
            channel,
            thread_ts,
            persona,
            f"On it, picking up #{request.issue_number}. Starting the run now.",
        )
        self.thread_state.remember_ad_hoc_thread_persona(channel, thread_ts, persona.id)

        board = self.board_factory.for_project(project.path) if self.board_factory else None
        if board is not None:
            try:
                await board.move_issue(int(request.issue_number), BoardColumn.IN_PROGRESS)
                logger.info("issue_pickup_moved", issue_number=request.issue_number)
            except Exception as e:
                logger.warning(
                    "issue_pickup_move_failed", issue_number=request.issue_number, error=str(e)
                )

        await self._dispatch(
            JobDispatch(
                job=JobName.RUN.value,
                project_path=project.path,
                channel=channel,
                thread_ts=thread_ts,
                persona_id=persona.id,
                issue_number=request.issue_number,
                issue_url=request.issue_url,
            )
        )
        return True

    # ======================
    # Issue review
    # ======================

    def _start_issue_review(self, channel: str, ts: str, text: str) -> bool:
        """Start an issue_review discussion anchored on a root message with an issue link."""
        reviewable = self.parser.parse_slack_issue_reviewable(text)
        if reviewable is None:
            return False
        if self.thread_state.is_issue_on_review_cooldown(reviewable.issue_url):
            logger.debug("issue_review_cooldown", url=reviewable.issue_url)
            return False

        project = resolve_target_project(channel, self.projects)
        if project is None:
            return False

        self.thread_state.mark_issue_reviewed(reviewable.issue_url)
        logger.info("issue_review_starting", ref=reviewable.issue_ref, channel=channel, ts=ts)
        self._spawn(self._run_issue_review(reviewable.issue_url, reviewable.issue_ref, channel, ts, project))
        return True

    async def _run_issue_review(
        self, issue_url: str, issue_ref: str, channel: str, ts: str, project: ProjectConfig
    ) -> None:
        issue_context = await self.context_fetcher.fetch_github_issue_context([issue_url])
        trigger = DiscussionTrigger(
            type=TriggerType.ISSUE_REVIEW,
            project_path=project.path,
            ref=issue_ref,
            context=issue_context or f"GitHub Issue: {issue_url}",
            channel_id=channel,
            thread_ts=ts,
        )
        await self.engine.start_discussion(trigger)

    def _spawn(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("background_task_failed", error=str(task.exception()))

    # ======================
    # Persona replies
    # ======================

    async def _reply_to_mentions(
        self,
        channel: str,
        thread_ts: str,
        message_ts: str,
        text: str,
        mentioned: Sequence[Persona],
        personas: Sequence[Persona],
        context: str,
    ) -> None:
        logger.info("routing_to_personas", personas=[p.name for p in mentioned], channel=channel)
        discussion = await self.engine.repository.find_active_by_thread(channel, thread_ts)

        last_posted, last_persona = "", None
        for persona in mentioned:
            if self.thread_state.is_persona_on_cooldown(channel, thread_ts, persona.id):
                logger.info("persona_on_cooldown", persona=persona.name)
                continue
            await self._apply_human_response_timing(channel, message_ts, persona)
            if discussion is not None:
                await self.engine.contribute_as_agent(discussion.id, persona)
            else:
                last_posted = await self.engine.reply_as_agent(
                    channel, thread_ts, text, persona, context, slug=self._slug_for(channel)
                )
                last_persona = persona

        if discussion is None:
            self.thread_state.remember_ad_hoc_thread_persona(channel, thread_ts, mentioned[0].id)
        if last_posted and last_persona is not None:
            await self._follow_agent_mentions(
                last_posted, channel, thread_ts, personas, context, last_persona.id
            )

    async def _reply_and_follow(
        self,
        channel: str,
        thread_ts: str,
        message_ts: str,
        text: str,
        persona: Persona,
        personas: Sequence[Persona],
        context: str,
    ) -> str:
        await self._apply_human_response_timing(channel, message_ts, persona)
        posted = await self.engine.reply_as_agent(
            channel, thread_ts, text, persona, context, slug=self._slug_for(channel)
        )
        self.thread_state.remember_ad_hoc_thread_persona(channel, thread_ts, persona.id)
        if posted:
            await self._follow_agent_mentions(posted, channel, thread_ts, personas, context, persona.id)
        return posted

    async def _follow_agent_mentions(
        self,
        posted_text: str,
        channel: str,
        thread_ts: str,
        personas: Sequence[Persona],
        context: str,
        speaker_id: str,
    ) -> None:
        """Teammates named in an agent reply answer once each; their replies are not followed."""
        named = [
            p
            for p in resolve_personas_by_plain_name(posted_text, personas)
            if p.id != speaker_id
            and not self.thread_state.is_persona_on_cooldown(channel, thread_ts, p.id)
        ]
        for persona in named:
            await self._sleep(
                self.thread_state.random_int(RESPONSE_DELAY_MIN_MS * 2, RESPONSE_DELAY_MAX_MS * 3)
                / 1000
            )
            await self.engine.reply_as_agent(
                channel, thread_ts, posted_text, persona, context, slug=self._slug_for(channel)
            )
            self.thread_state.remember_ad_hoc_thread_persona(channel, thread_ts, persona.id)

    async def _engage_multiple(
        self,
        channel: str,
        thread_ts: str,
        message_ts: str,
        text: str,
        personas: Sequence[Persona],
        context: str,
    ) -> None:
        count = self.thread_state.random_int(2, 3)
        participants = self.thread_state.pick_available_personas(personas, channel, thread_ts, count)
        if not participants:
            return
        logger.info("ambient_message_engaging", personas=[p.name for p in participants])

        last_posted = ""
        for index, persona in enumerate(participants):
            if index == 0:
                await self._apply_human_response_timing(channel, message_ts, persona)
            else:
                await self._piggyback_delay()
            last_posted = await self.engine.reply_as_agent(
                channel, thread_ts, text, persona, context, slug=self._slug_for(channel)
            )
            self.thread_state.remember_ad_hoc_thread_persona(channel, thread_ts, persona.id)
        if last_posted:
            await self._follow_agent_mentions(
                last_posted, channel, thread_ts, personas, context, participants[-1].id
            )

    # ======================
    # Reactions and second voices
    # ======================

    async def _maybe_react_to_human_message(
        self, channel: str, message_ts: str, persona: Persona
    ) -> None:
        if not message_ts or not self.thread_state.random_chance(self.reaction_probability):
            return
        candidates = reaction_candidates_for_persona(persona)
        emoji = candidates[self.thread_state.random_int(0, len(candidates) - 1)]
        await self._sleep(
            self.thread_state.random_int(REACTION_DELAY_MIN_MS, REACTION_DELAY_MAX_MS) / 1000
        )
        try:
            await self.engine.transport.add_reaction(channel, message_ts, emoji)
        except Exception as e:
            logger.debug("reaction_failed", channel=channel, emoji=emoji, error=str(e))

    async def _apply_human_response_timing(
        self, channel: str, message_ts: str, persona: Persona
    ) -> None:
        """Maybe react to the human message, then wait a human-like moment before replying."""
        await self._maybe_react_to_human_message(channel, message_ts, persona)
        await self._response_delay()

    async def _piggyback_delay(self) -> None:
        delay_ms = self.thread_state.random_int(PIGGYBACK_DELAY_MIN_MS, PIGGYBACK_DELAY_MAX_MS)
        await self._sleep(delay_ms / 1000)

    def _spawn_piggyback(
        self,
        channel: str,
        thread_ts: str,
        text: str,
        personas: Sequence[Persona],
        context: str,
        speaker_id: str,
    ) -> None:
        if not self.thread_state.random_chance(self.piggyback_probability):
            return
        others = [
            p
            for p in personas
            if p.id != speaker_id
            and not self.thread_state.is_persona_on_cooldown(channel, thread_ts, p.id)
        ]
        if not others:
            return
        persona = others[self.thread_state.random_int(0, len(others) - 1)]
        self._spawn(self._piggyback_reply(channel, thread_ts, text, persona, personas, context))

    async def _piggyback_reply(
        self,
        channel: str,
        thread_ts: str,
        text: str,
        persona: Persona,
        personas: Sequence[Persona],
        context: str,
    ) -> None:
        """A second persona chiming in on the same human message after a longer pause."""
        await self._piggyback_delay()
        posted = await self.engine.reply_as_agent(
            channel, thread_ts, text, persona, context, slug=self._slug_for(channel)
        )
        self.thread_state.remember_ad_hoc_thread_persona(channel, thread_ts, persona.id)
        logger.info("piggyback_reply", persona=persona.name, channel=channel, posted=bool(posted))
        if posted:
            await self._follow_agent_mentions(posted, channel, thread_ts, personas, context, persona.id)

    def _slug_for(self, channel: str) -> Optional[str]:
        project = resolve_target_project(channel, self.projects)
        return project_slug(project.path) if project is not None else None

    async def _recover_persona_from_history(
        self, channel: str, thread_ts: str, personas: Sequence[Persona]
    ) -> Optional[Persona]:
        """Most recent persona speaker in the thread, for threads that outlived process memory."""
        try:
            history = await self.engine.transport.get_thread_history(
                channel, thread_ts, HISTORY_RECOVERY_LIMIT
            )
        except Exception as e:
            logger.warning("thread_history_failed", channel=channel, error=str(e))
            return None

        by_name = {p.name.lower(): p for p in personas}
        for message in reversed(history):
            if message.username and message.username.lower() in by_name:
                return by_name[message.username.lower()]
        return None

    # ======================
    # Lifecycle
    # ======================

    def start(self) -> None:
        """Schedule persona intros in the background."""
        if self.settings.persona_intros_enabled:
            self._spawn(self.post_persona_intros())

    def configured_channels(self) -> list[str]:
        channels = [
            self.settings.slack_channel_prs,
            self.settings.slack_channel_incidents,
            self.settings.slack_channel_eng,
            *(p.slack_channel_id for p in self.projects),
        ]
        return list(dict.fromkeys(c for c in channels if c))

    async def post_persona_intros(self) -> list[str]:
        """
        Join the configured channels and introduce personas that never have.

        Every configured channel counts as active from now, so the proactive
        loop waits a full idle period after startup. Intros go to the
        engineering channel; a persona is recorded as introduced only once
        its intro is posted.

        Returns:
            Ids of the personas introduced in this call
        """
        channels = self.configured_channels()
        for channel in channels:
            self.thread_state.mark_channel_activity(channel)
        for channel in channels:
            try:
                await self.engine.transport.join_channel(channel)
            except Exception as e:
                logger.debug("channel_join_failed", channel=channel, error=str(e))

        eng_channel = self.settings.slack_channel_eng
        if not eng_channel:
            return []

        introduced = await self.engine.repository.get_introduced_persona_ids()
        personas = await self.engine.repository.get_active_personas()
        new_personas = [p for p in personas if p.id not in introduced]
        if not new_personas:
            logger.info("persona_intros_skipped", reason="all_introduced")
            return []

        posted_ids = []
        for persona in new_personas:
            posted = await self.engine.post_message(eng_channel, build_persona_intro(persona), persona)
            if posted is None:
                logger.warning("persona_intro_failed", persona=persona.name)
                continue
            await self.engine.repository.mark_persona_introduced(persona.id)
            posted_ids.append(persona.id)
            logger.info("persona_intro_posted", persona=persona.name, channel=eng_channel)
        return posted_ids

    async def shutdown(self) -> None:
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
