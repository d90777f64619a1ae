"""
Unit tests for ConsensusEvaluator.

Covers:
  - Decision and verdict parsing
  - APPROVE / CHANGES / HUMAN outcomes and their statuses
  - Another round only within round and reply budgets
  - PR refinement dispatch on final-round CHANGES
  - Issue-review verdicts and their board side effects
  - Fallbacks when the lead call fails or no lead exists
"""

from unittest.mock import AsyncMock

import pytest

from fakes import FakeGenerator, FakeRepository
from huddle.models.discussion import (
    ConsensusResult,
    DiscussionStatus,
    DiscussionTrigger,
    TriggerType,
)
from huddle.orchestration.collaborators import JobDispatch
from huddle.orchestration.consensus import (
    ConsensusEvaluator,
    IssueVerdict,
    LeadDecision,
    count_thread_replies,
    parse_consensus_decision,
    parse_issue_verdict,
)

PROJECT_PATH = "/repos/night-watch-cli"


class TestParsing:
    @pytest.mark.parametrize(
        "text, expected",
        [
            ("APPROVE: Ship it", (LeadDecision.APPROVE, "Ship it")),
            ("CHANGES: add a test", (LeadDecision.CHANGES, "add a test")),
            ("changes: add a test", (LeadDecision.HUMAN, "changes: add a test")),
            ("HUMAN: split on caching", (LeadDecision.HUMAN, "split on caching")),
            ("APPROVE", (LeadDecision.APPROVE, "")),
            ("I think we're fine", (LeadDecision.HUMAN, "I think we're fine")),
            ("", (LeadDecision.HUMAN, "")),
        ],
    )
    def test_consensus_decision(self, text, expected):
        assert parse_consensus_decision(text) == expected

    def test_issue_verdict(self):
        assert parse_issue_verdict("READY: blocks release") == (IssueVerdict.READY, "blocks release")
        assert parse_issue_verdict("CLOSE: dup of #3") == (IssueVerdict.CLOSE, "dup of #3")
        assert parse_issue_verdict("close: dup of #3") == (IssueVerdict.DRAFT, "close: dup of #3")
        assert parse_issue_verdict("maybe later") == (IssueVerdict.DRAFT, "maybe later")

    def test_count_thread_replies(self):
        assert count_thread_replies(0) == 0
        assert count_thread_replies(1) == 0
        assert count_thread_replies(5) == 4


# ==================
# Fixtures
# ==================


@pytest.fixture
def escalation():
    return AsyncMock()


@pytest.fixture
def run_round():
    return AsyncMock()


def make_evaluator(transport, repository, lead_reply, escalation, job_dispatcher=None, max_replies=4):
    def respond(prompt, persona):
        return lead_reply(prompt) if callable(lead_reply) else lead_reply

    return ConsensusEvaluator(
        transport,
        repository,
        FakeGenerator(respond),
        escalation,
        transport.post_as_agent,
        AsyncMock(),
        max_rounds=2,
        max_agent_thread_replies=max_replies,
        job_dispatcher=job_dispatcher,
    )


async def _discussion(repository, transport, trigger_type=TriggerType.PR_REVIEW, ref="42", replies=2):
    """A discussion whose thread already holds a root post and ``replies`` replies."""
    dev = repository.personas[0]
    root = await transport.post_as_agent("C1", "Opened #42", dev)
    for i in range(replies):
        await transport.post_as_agent("C1", f"note {i}", dev, root.ts)
    return await repository.create_discussion(
        project_path=PROJECT_PATH,
        trigger_type=trigger_type,
        trigger_ref=ref,
        channel_id="C1",
        thread_ts=root.ts,
        round=1,
        participants=["dev"],
    )


def _trigger(trigger_type=TriggerType.PR_REVIEW, ref="42") -> DiscussionTrigger:
    return DiscussionTrigger(type=trigger_type, project_path=PROJECT_PATH, ref=ref)


# ==================
# Regular discussions
# ==================


class TestEvaluate:
    @pytest.mark.asyncio
    async def test_approve(self, transport, repository, escalation, run_round):
        discussion = await _discussion(repository, transport)
        evaluator = make_evaluator(transport, repository, "APPROVE: Clean, ship it", escalation)

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        stored = await repository.get_discussion(discussion.id)
        assert stored.status == DiscussionStatus.CONSENSUS
        assert stored.consensus_result == ConsensusResult.APPROVED
        assert transport.by("Carlos") == ["Clean, ship it"]
        run_round.assert_not_awaited()
        escalation.open_issue.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_approve_code_watch_opens_issue(self, transport, repository, escalation, run_round):
        discussion = await _discussion(repository, transport, TriggerType.CODE_WATCH, ref="src/auth.ts:88")
        evaluator = make_evaluator(transport, repository, "APPROVE", escalation)

        await evaluator.evaluate(discussion.id, _trigger(TriggerType.CODE_WATCH, "src/auth.ts:88"), run_round)

        assert transport.by("Carlos") == ["Clean."]
        escalation.open_issue.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_changes_runs_another_round(self, transport, repository, escalation):
        discussion = await _discussion(repository, transport)
        decisions = iter(["CHANGES: cap the retries", "APPROVE: good now"])
        evaluator = make_evaluator(
            transport, repository, lambda prompt: next(decisions), escalation, max_replies=8
        )
        run_round = AsyncMock()

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        run_round.assert_awaited_once()
        discussion_id, reviewers, _, feedback = run_round.call_args.args
        assert discussion_id == discussion.id
        assert [p.name for p in reviewers] == ["Carlos", "Maya", "Priya"]
        assert feedback == "cap the retries"

        stored = await repository.get_discussion(discussion.id)
        assert stored.round == 2
        assert stored.consensus_result == ConsensusResult.APPROVED

    @pytest.mark.asyncio
    async def test_changes_without_reply_room_is_final(self, transport, repository, escalation, run_round):
        discussion = await _discussion(repository, transport, replies=2)
        evaluator = make_evaluator(transport, repository, "CHANGES: cap the retries", escalation)

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        run_round.assert_not_awaited()
        stored = await repository.get_discussion(discussion.id)
        assert stored.status == DiscussionStatus.CONSENSUS
        assert stored.consensus_result == ConsensusResult.CHANGES_REQUESTED
        assert transport.by("Carlos") == ["Need changes before merge: cap the retries"]

    @pytest.mark.asyncio
    async def test_final_changes_dispatches_pr_review(self, transport, repository, escalation, run_round):
        discussion = await _discussion(repository, transport)
        dispatcher = AsyncMock()
        evaluator = make_evaluator(
            transport, repository, "CHANGES: cap the retries", escalation, job_dispatcher=dispatcher
        )

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        request: JobDispatch = dispatcher.dispatch.call_args.args[0]
        assert request.job == "review"
        assert request.pr_number == "42"
        assert request.prompt == "cap the retries"
        assert request.thread_ts == discussion.thread_ts
        assert "Sending PR #42 back through with the notes." in transport.by("Carlos")

    @pytest.mark.asyncio
    async def test_dispatch_failure_is_logged(self, transport, repository, escalation, run_round):
        discussion = await _discussion(repository, transport)
        dispatcher = AsyncMock()
        dispatcher.dispatch.side_effect = RuntimeError("queue down")
        evaluator = make_evaluator(
            transport, repository, "CHANGES: cap the retries", escalation, job_dispatcher=dispatcher
        )

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        stored = await repository.get_discussion(discussion.id)
        assert stored.consensus_result == ConsensusResult.CHANGES_REQUESTED

    @pytest.mark.asyncio
    async def test_human(self, transport, repository, escalation, run_round):
        discussion = await _discussion(repository, transport)
        evaluator = make_evaluator(transport, repository, "HUMAN: team is split on caching", escalation)

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        stored = await repository.get_discussion(discussion.id)
        assert stored.status == DiscussionStatus.BLOCKED
        assert stored.consensus_result == ConsensusResult.HUMAN_NEEDED
        assert transport.by("Carlos") == ["Need a human decision: team is split on caching"]

    @pytest.mark.asyncio
    async def test_lead_failure_needs_human(self, transport, repository, escalation, run_round):
        discussion = await _discussion(repository, transport)
        evaluator = make_evaluator(transport, repository, RuntimeError("model down"), escalation)

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        stored = await repository.get_discussion(discussion.id)
        assert stored.status == DiscussionStatus.BLOCKED

    @pytest.mark.asyncio
    async def test_reply_budget_exhausted(self, transport, repository, escalation, run_round):
        discussion = await _discussion(repository, transport, replies=4)
        evaluator = make_evaluator(transport, repository, "APPROVE", escalation)

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        stored = await repository.get_discussion(discussion.id)
        assert stored.status == DiscussionStatus.BLOCKED
        assert stored.consensus_result == ConsensusResult.HUMAN_NEEDED

    @pytest.mark.asyncio
    async def test_no_lead_approves(self, transport, dev, maya, escalation, run_round):
        repository = FakeRepository([dev, maya])
        discussion = await _discussion(repository, transport)
        evaluator = make_evaluator(transport, repository, "HUMAN", escalation)

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        stored = await repository.get_discussion(discussion.id)
        assert stored.consensus_result == ConsensusResult.APPROVED

    @pytest.mark.asyncio
    async def test_terminal_discussion_untouched(self, transport, repository, escalation, run_round):
        discussion = await _discussion(repository, transport)
        await repository.update_status(discussion.id, DiscussionStatus.CLOSED)
        evaluator = make_evaluator(transport, repository, "APPROVE", escalation)

        await evaluator.evaluate(discussion.id, _trigger(), run_round)

        assert transport.by("Carlos") == []
        assert (await repository.get_discussion(discussion.id)).status == DiscussionStatus.CLOSED


# ==================
# Issue reviews
# ==================


class TestIssueReview:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "reply, verdict, line",
        [
            ("READY: blocks the release", "ready", "blocks the release"),
            ("CLOSE", "close", "Closing this, not worth tracking."),
        ],
    )
    async def test_actionable_verdicts(self, transport, repository, escalation, run_round, reply, verdict, line):
        ref = "acme/night-watch-cli#12"
        discussion = await _discussion(repository, transport, TriggerType.ISSUE_REVIEW, ref=ref)
        evaluator = make_evaluator(transport, repository, reply, escalation)

        await evaluator.evaluate(discussion.id, _trigger(TriggerType.ISSUE_REVIEW, ref), run_round)

        assert transport.by("Carlos") == [line]
        assert escalation.apply_issue_verdict.call_args.args[0] == verdict
        stored = await repository.get_discussion(discussion.id)
        assert stored.status == DiscussionStatus.CONSENSUS
        assert stored.consensus_result == ConsensusResult.APPROVED

    @pytest.mark.asyncio
    async def test_draft_has_no_side_effect(self, transport, repository, escalation, run_round):
        ref = "acme/night-watch-cli#12"
        discussion = await _discussion(repository, transport, TriggerType.ISSUE_REVIEW, ref=ref)
        evaluator = make_evaluator(transport, repository, RuntimeError("model down"), escalation)

        await evaluator.evaluate(discussion.id, _trigger(TriggerType.ISSUE_REVIEW, ref), run_round)

        assert transport.by("Carlos") == ["triage call failed, leaving in Draft for manual review"]
        escalation.apply_issue_verdict.assert_not_awaited()
