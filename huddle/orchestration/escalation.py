"""
Board escalation: turning deliberation outcomes into tracked issues.

Board configuration is always resolved from the trigger's own project. A
project without a board never borrows another project's; the thread gets
an explicit notice instead.
"""

import os
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence

from huddle.integrations.gh_cli import GhCli, GhCliError
from huddle.models.board import BoardColumn
from huddle.models.discussion import Discussion, DiscussionTrigger, PostedMessage
from huddle.models.persona import Persona
from huddle.orchestration.collaborators import BoardProviderFactory, ContributionGenerator
from huddle.orchestration.humanizer import humanize_reply, is_skip_message
from huddle.orchestration.prompts import (
    build_audit_triage_prompt,
    build_code_candidate_prompt,
    build_issue_body_prompt,
    build_issue_title_from_trigger,
)
from huddle.personas.resolver import find_dev, find_lead
from huddle.personas.soul import compile_soul
from huddle.utils.logging import get_logger

logger = get_logger(__name__)

ISSUE_REF_RE = re.compile(r"^([^/]+)/([^#]+)#(\d+)$")
WRITEUP_PREVIEW_CHARS = 600
_AUDIT_LEAD_IN_RE = re.compile(r"^(found|noticed|flagging|caught)\s+", re.IGNORECASE)
_TRAILING_PUNCT_RE = re.compile(r"[.!?]+$")

PostFn = Callable[[str, str, Persona, Optional[str]], Awaitable[Optional[PostedMessage]]]


@dataclass(frozen=True)
class IssueRef:
    owner: str
    repo: str
    number: str

    @property
    def repo_full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


def parse_issue_ref(ref: str) -> Optional[IssueRef]:
    """``"acme/api#12"`` -> ``IssueRef("acme", "api", "12")``; None otherwise."""
    match = ISSUE_REF_RE.match(ref.strip())
    if not match:
        return None
    return IssueRef(*match.groups())


def project_label(project_path: str) -> str:
    return os.path.basename(project_path.rstrip("/")) or project_path


def build_audit_issue_title(one_liner: str) -> str:
    """``"Found unvalidated redirects."`` -> ``"fix: unvalidated redirects"``."""
    summary = _TRAILING_PUNCT_RE.sub("", one_liner.lower())
    summary = _AUDIT_LEAD_IN_RE.sub("", summary)
    return f"fix: {summary[:80]}"


class BoardEscalation:
    """
    Board and tracker side effects of a deliberation.

    Args:
        generator: Produces issue bodies and triage calls
        board_factory: Resolves a project's board
        gh: gh CLI runner used to close issues
        post: Engine callback that posts as a persona and records the reply
    """

    def __init__(
        self,
        generator: ContributionGenerator,
        board_factory: Optional[BoardProviderFactory],
        gh: GhCli,
        post: PostFn,
    ):
        self.generator = generator
        self.board_factory = board_factory
        self.gh = gh
        self._post = post

    def _board_for(self, project_path: str):
        if self.board_factory is None:
            return None
        return self.board_factory.for_project(project_path)

    async def generate_issue_body(self, context: str, persona: Persona) -> str:
        """
        Raises:
            Exception: Whatever the generator raises
        """
        raw = await self.generator.generate(
            compile_soul(persona),
            build_issue_body_prompt(persona, context),
            persona=persona,
            max_tokens=1024,
        )
        return raw.strip()

    # ======================
    # Issue opener
    # ======================

    async def open_issue(
        self,
        discussion: Discussion,
        trigger: DiscussionTrigger,
        personas: Sequence[Persona],
    ) -> None:
        """Write up an approved code_watch finding as an In Progress issue."""
        dev = find_dev(personas)
        if dev is None:
            return

        channel, thread_ts = discussion.channel_id, discussion.thread_ts
        await self._post(channel, "Agreed. Writing up an issue for this.", dev, thread_ts)

        title = build_issue_title_from_trigger(trigger)
        try:
            body = await self.generate_issue_body(trigger.context, dev)
        except Exception as e:
            logger.warning("issue_body_generation_failed", discussion_id=discussion.id, error=str(e))
            body = trigger.context
        preview = body[:WRITEUP_PREVIEW_CHARS]

        board = self._board_for(trigger.project_path)
        if board is None:
            await self._post(
                channel,
                f"No board configured for {project_label(trigger.project_path)}, "
                f"dropping the writeup here:\n\n{preview}",
                dev,
                thread_ts,
            )
            return

        try:
            issue = await board.create_issue(title, body, BoardColumn.IN_PROGRESS)
            if issue.column != BoardColumn.IN_PROGRESS:
                await board.move_issue(issue.number, BoardColumn.IN_PROGRESS)
        except Exception as e:
            logger.warning("board_create_issue_failed", discussion_id=discussion.id, error=str(e))
            await self._post(
                channel,
                f"Couldn't open the issue automatically, here's the writeup:\n\n{preview}",
                dev,
                thread_ts,
            )
            return

        logger.info("board_issue_opened", discussion_id=discussion.id, issue_number=issue.number)
        await self._post(
            channel,
            f"Opened #{issue.number}: {issue.title} - {issue.url}\n"
            "Taking first pass now. It's in In Progress.",
            dev,
            thread_ts,
        )

    # ======================
    # Issue-review verdicts
    # ======================

    async def apply_issue_verdict(
        self,
        verdict: str,
        discussion: Discussion,
        trigger: DiscussionTrigger,
        personas: Sequence[Persona],
    ) -> None:
        """
        Act on a READY or CLOSE issue-review verdict.

        READY moves the issue to Ready on the trigger project's board. CLOSE
        closes it through ``gh issue close``. Other verdicts are a no-op.
        """
        executor = find_dev(personas) or find_lead(personas) or (personas[0] if personas else None)
        if executor is None:
            return

        issue_ref = parse_issue_ref(trigger.ref)
        if issue_ref is None:
            logger.warning("issue_review_unexpected_ref", ref=trigger.ref)
            return

        channel, thread_ts = discussion.channel_id, discussion.thread_ts

        if verdict == "ready":
            board = self._board_for(trigger.project_path)
            if board is None:
                await self._post(
                    channel,
                    f"No board configured for {project_label(trigger.project_path)}, "
                    f"so #{issue_ref.number} stays where it is.",
                    executor,
                    thread_ts,
                )
                return
            try:
                await board.move_issue(int(issue_ref.number), BoardColumn.READY)
            except Exception as e:
                logger.warning("board_move_issue_failed", ref=trigger.ref, error=str(e))
                return
            await self._post(channel, f"Moved #{issue_ref.number} to Ready.", executor, thread_ts)

        elif verdict == "close":
            try:
                await self.gh.close_issue(
                    issue_ref.number, issue_ref.repo_full_name, cwd=trigger.project_path
                )
            except GhCliError as e:
                logger.warning("gh_issue_close_failed", ref=trigger.ref, error=str(e))
                return
            await self._post(channel, f"Closed #{issue_ref.number}.", executor, thread_ts)

    # ======================
    # Scanner and audit findings
    # ======================

    async def analyze_code_candidate(
        self,
        personas: Sequence[Persona],
        file_context: str,
        signal: str,
        location: str,
    ) -> Optional[str]:
        """The implementer's take on a scanner finding, or None if not worth raising."""
        dev = find_dev(personas)
        if dev is None:
            return None

        try:
            result = await self.generator.generate(
                compile_soul(dev),
                build_code_candidate_prompt(dev, file_context, signal, location),
                persona=dev,
            )
        except Exception as e:
            logger.warning("code_candidate_analysis_failed", location=location, error=str(e))
            return None

        if not result or is_skip_message(result):
            return None
        return humanize_reply(result, allow_emoji=False, max_sentences=2)

    async def handle_audit_report(
        self,
        personas: Sequence[Persona],
        report: str,
        project_name: str,
        project_path: str,
        channel: str,
    ) -> None:
        """
        Triage an audit report, file an issue in Ready if warranted, post one line.

        No thread is started; the post is a single channel message.
        """
        if not report or report.strip() == "NO_ISSUES_FOUND":
            return
        dev = find_dev(personas)
        if dev is None:
            return

        try:
            triage = await self.generator.generate(
                compile_soul(dev),
                build_audit_triage_prompt(dev, project_name, report),
                persona=dev,
                max_tokens=256,
            )
        except Exception as e:
            logger.warning("audit_triage_failed", project=project_name, error=str(e))
            return

        triage = (triage or "").strip()
        if not triage.upper().startswith("FILE:"):
            logger.info("audit_not_filed", project=project_name)
            return
        one_liner = triage[len("FILE:"):].strip()
        if not one_liner:
            return

        issue_url: Optional[str] = None
        board = self._board_for(project_path)
        if board is not None:
            context = f"Project: {project_name}\n\nAudit report:\n{report[:2000]}"
            try:
                body = await self.generate_issue_body(context, dev)
            except Exception as e:
                logger.warning("issue_body_generation_failed", project=project_name, error=str(e))
                body = report[:1200]
            try:
                issue = await board.create_issue(
                    build_audit_issue_title(one_liner), body, BoardColumn.READY
                )
                issue_url = issue.url
                logger.info(
                    "audit_issue_filed",
                    project=project_name,
                    issue_number=issue.number,
                )
            except Exception as e:
                logger.warning("audit_issue_create_failed", project=project_name, error=str(e))

        message = (
            f"{one_liner} -> {issue_url}"
            if issue_url
            else humanize_reply(one_liner, allow_emoji=False, max_sentences=2)
        )
        await self._post(channel, message, dev, None)
