"""
Consensus evaluation for deliberations.

After each contribution round the lead persona makes the call. Regular
discussions end in APPROVE / CHANGES / HUMAN; issue reviews end in a
READY / CLOSE / DRAFT triage verdict. Multi-round handling is an explicit
loop, one lead decision per iteration.
"""

from enum import Enum
from typing import Awaitable, Callable, Optional, Sequence

from huddle.models.chat import JobName
from huddle.models.discussion import (
    ConsensusResult,
    Discussion,
    DiscussionStatus,
    DiscussionTrigger,
    TriggerType,
)
from huddle.models.persona import Persona
from huddle.orchestration.collaborators import (
    ChatTransport,
    ContributionGenerator,
    DiscussionRepository,
    JobDispatch,
    JobDispatcher,
)
from huddle.orchestration.escalation import BoardEscalation, PostFn
from huddle.orchestration.humanizer import humanize_reply, is_skip_message
from huddle.orchestration.prompts import (
    build_consensus_prompt,
    build_issue_review_verdict_prompt,
    format_thread_history,
)
from huddle.personas.resolver import find_dev, find_lead, get_participating_personas
from huddle.personas.soul import compile_soul
from huddle.utils.logging import get_logger

logger = get_logger(__name__)

CONSENSUS_HISTORY_LIMIT = 20
MIN_REPLIES_FOR_ANOTHER_ROUND = 3

RoundRunner = Callable[[str, Sequence[Persona], DiscussionTrigger, str], Awaitable[None]]


class LeadDecision(str, Enum):
    APPROVE = "APPROVE"
    CHANGES = "CHANGES"
    HUMAN = "HUMAN"


class IssueVerdict(str, Enum):
    READY = "READY"
    CLOSE = "CLOSE"
    DRAFT = "DRAFT"


def parse_consensus_decision(text: str) -> tuple[LeadDecision, str]:
    """
    Split a lead reply into its decision and message.

    ``"CHANGES: add a test"`` -> ``(CHANGES, "add a test")``. Prefixes are
    upper-case and matched exactly; anything else (``"changes: ..."``
    included) is HUMAN with the full text as reason.
    """
    stripped = (text or "").strip()
    for decision in LeadDecision:
        if stripped.startswith(decision.value):
            return decision, stripped[len(decision.value):].lstrip(":").strip()
    return LeadDecision.HUMAN, stripped


def parse_issue_verdict(text: str) -> tuple[IssueVerdict, str]:
    """Like ``parse_consensus_decision``; unrecognised replies are DRAFT."""
    stripped = (text or "").strip()
    for verdict in IssueVerdict:
        if stripped.startswith(verdict.value):
            return verdict, stripped[len(verdict.value):].lstrip(":").strip()
    return IssueVerdict.DRAFT, stripped


def count_thread_replies(message_count: int) -> int:
    """Replies in a thread, excluding its root message."""
    return max(0, message_count - 1)


class ConsensusEvaluator:
    """
    Drives a discussion to a terminal status.

    Args:
        transport: Reads thread history
        repository: Discussion and persona storage
        generator: The lead's decision call
        escalation: Board side effects of a decision
        post: Engine callback that posts as a persona and records the reply
        pause: Awaitable human-like delay between posts
        max_rounds: Rounds before CHANGES becomes final
        max_agent_thread_replies: Thread reply budget
        job_dispatcher: Optional hook that sends a PR back for review
    """

    def __init__(
        self,
        transport: ChatTransport,
        repository: DiscussionRepository,
        generator: ContributionGenerator,
        escalation: BoardEscalation,
        post: PostFn,
        pause: Callable[[], Awaitable[None]],
        max_rounds: int = 2,
        max_agent_thread_replies: int = 4,
        job_dispatcher: Optional[JobDispatcher] = None,
    ):
        self.transport = transport
        self.repository = repository
        self.generator = generator
        self.escalation = escalation
        self._post = post
        self._pause = pause
        self.max_rounds = max_rounds
        self.max_agent_thread_replies = max_agent_thread_replies
        self.job_dispatcher = job_dispatcher

    async def _history(self, discussion: Discussion):
        try:
            return await self.transport.get_thread_history(
                discussion.channel_id, discussion.thread_ts, CONSENSUS_HISTORY_LIMIT
            )
        except Exception as e:
            logger.warning("thread_history_failed", discussion_id=discussion.id, error=str(e))
            return []

    async def _ask_lead(self, lead: Persona, prompt: str, fallback: str) -> str:
        try:
            return await self.generator.generate(compile_soul(lead), prompt, persona=lead)
        except Exception as e:
            logger.warning("consensus_call_failed", persona=lead.name, error=str(e))
            return fallback

    async def _post_lead_line(
        self,
        discussion: Discussion,
        lead: Persona,
        text: str,
        max_sentences: int = 1,
    ) -> None:
        message = humanize_reply(text, allow_emoji=False, max_sentences=max_sentences)
        if message and not is_skip_message(message):
            await self._post(discussion.channel_id, message, lead, discussion.thread_ts)

    async def _finish(
        self,
        discussion_id: str,
        status: DiscussionStatus,
        result: ConsensusResult,
        trigger: DiscussionTrigger,
    ) -> None:
        await self.repository.update_status(discussion_id, status, result)
        logger.info(
            "consensus_reached",
            discussion_id=discussion_id,
            status=status.value,
            result=result.value,
            trigger=trigger.type.value,
        )

    # ======================
    # Regular discussions
    # ======================

    async def evaluate(
        self,
        discussion_id: str,
        trigger: DiscussionTrigger,
        run_round: RoundRunner,
    ) -> None:
        """
        Loop until the discussion leaves the active state.

        ``run_round`` runs another contribution round when the lead asks for
        changes and the round and reply budgets allow one.
        """
        while True:
            discussion = await self.repository.get_discussion(discussion_id)
            if discussion is None or not discussion.is_active:
                return

            if trigger.type == TriggerType.ISSUE_REVIEW:
                await self.evaluate_issue_review(discussion_id, trigger)
                return

            personas = await self.repository.get_active_personas()
            lead = find_lead(personas)
            if lead is None:
                await self._finish(
                    discussion_id, DiscussionStatus.CONSENSUS, ConsensusResult.APPROVED, trigger
                )
                return

            history = await self._history(discussion)
            replies_left = max(
                0, self.max_agent_thread_replies - count_thread_replies(len(history))
            )
            if replies_left <= 0:
                await self._finish(
                    discussion_id, DiscussionStatus.BLOCKED, ConsensusResult.HUMAN_NEEDED, trigger
                )
                return

            reply = await self._ask_lead(
                lead,
                build_consensus_prompt(
                    lead, format_thread_history(history), discussion.round, self.max_rounds
                ),
                "HUMAN: consensus call failed, needs manual review",
            )
            decision, message = parse_consensus_decision(reply)

            if decision == LeadDecision.APPROVE:
                await self._post_lead_line(discussion, lead, message or "Clean. Ship it.")
                await self._finish(
                    discussion_id, DiscussionStatus.CONSENSUS, ConsensusResult.APPROVED, trigger
                )
                if trigger.type == TriggerType.CODE_WATCH:
                    await self.escalation.open_issue(discussion, trigger, personas)
                return

            if (
                decision == LeadDecision.CHANGES
                and discussion.round < self.max_rounds
                and replies_left >= MIN_REPLIES_FOR_ANOTHER_ROUND
            ):
                await self._post_lead_line(
                    discussion, lead, message or "Need one more pass on a couple items."
                )
                await self._pause()
                await self.repository.update_round(discussion_id, discussion.round + 1)

                dev = find_dev(personas)
                reviewers = [
                    p
                    for p in get_participating_personas(trigger.type, personas)
                    if dev is None or p.id != dev.id
                ]
                await run_round(discussion_id, reviewers, trigger, message)
                continue

            if decision == LeadDecision.CHANGES:
                summary = (
                    f"Need changes before merge: {message}"
                    if message
                    else "Need changes before merge. Please address the thread notes."
                )
                await self._post_lead_line(discussion, lead, summary, max_sentences=2)
                await self._finish(
                    discussion_id,
                    DiscussionStatus.CONSENSUS,
                    ConsensusResult.CHANGES_REQUESTED,
                    trigger,
                )
                if trigger.type == TriggerType.PR_REVIEW:
                    await self._request_pr_refinement(discussion, lead, message)
                return

            reason = (
                f"Need a human decision: {message}" if message else "Need a human decision on this one."
            )
            await self._post_lead_line(discussion, lead, reason)
            await self._finish(
                discussion_id, DiscussionStatus.BLOCKED, ConsensusResult.HUMAN_NEEDED, trigger
            )
            return

    async def _request_pr_refinement(
        self, discussion: Discussion, lead: Persona, changes: str
    ) -> None:
        """Send the PR back through review with the thread's notes."""
        if self.job_dispatcher is None:
            return
        await self._post(
            discussion.channel_id,
            f"Sending PR #{discussion.trigger_ref} back through with the notes.",
            lead,
            discussion.thread_ts,
        )
        try:
            await self.job_dispatcher.dispatch(
                JobDispatch(
                    job=JobName.REVIEW.value,
                    project_path=discussion.project_path,
                    channel=discussion.channel_id,
                    thread_ts=discussion.thread_ts,
                    persona_id=lead.id,
                    pr_number=discussion.trigger_ref,
                    prompt=changes,
                )
            )
        except Exception as e:
            logger.warning("pr_refinement_dispatch_failed", discussion_id=discussion.id, error=str(e))

    # ======================
    # Issue reviews
    # ======================

    async def evaluate_issue_review(self, discussion_id: str, trigger: DiscussionTrigger) -> None:
        """One READY / CLOSE / DRAFT call by the lead; every verdict is consensus/approved."""
        discussion = await self.repository.get_discussion(discussion_id)
        if discussion is None or not discussion.is_active:
            return

        personas = await self.repository.get_active_personas()
        lead = find_lead(personas)
        if lead is None:
            await self._finish(
                discussion_id, DiscussionStatus.CONSENSUS, ConsensusResult.APPROVED, trigger
            )
            return

        history = await self._history(discussion)
        reply = await self._ask_lead(
            lead,
            build_issue_review_verdict_prompt(lead, format_thread_history(history)),
            "DRAFT: triage call failed, leaving in Draft for manual review",
        )
        verdict, message = parse_issue_verdict(reply)

        default_lines = {
            IssueVerdict.READY: "Looks good, moving to Ready.",
            IssueVerdict.CLOSE: "Closing this, not worth tracking.",
            IssueVerdict.DRAFT: "Leaving in Draft, needs more context.",
        }
        await self._post_lead_line(discussion, lead, message or default_lines[verdict])
        await self._finish(
            discussion_id, DiscussionStatus.CONSENSUS, ConsensusResult.APPROVED, trigger
        )

        if verdict in (IssueVerdict.READY, IssueVerdict.CLOSE):
            await self.escalation.apply_issue_verdict(
                verdict.value.lower(), discussion, trigger, personas
            )
