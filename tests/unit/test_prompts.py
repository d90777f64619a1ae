"""
Unit tests for opening messages and prompt builders.

Covers:
  - Opening message per trigger type, including stable code_watch/issue openers
  - Code-watch context parsing and issue titles
  - Thread history formatting
  - Contribution prompt sections (roster, roadmap, round guidance, issue guidance)
  - Lead decision prompts and ad-hoc reply prompts
  - Proactive channel prompt
"""

import random

import pytest

from huddle.models.discussion import DiscussionTrigger, ThreadMessage, TriggerType
from huddle.orchestration.prompts import (
    build_ad_hoc_reply_prompt,
    build_consensus_prompt,
    build_contribution_prompt,
    build_issue_review_verdict_prompt,
    build_issue_title_from_trigger,
    build_opening_message,
    build_proactive_prompt,
    format_thread_history,
    has_concrete_code_context,
    is_casual_message,
    parse_code_watch_context,
)


def _trigger(trigger_type: TriggerType, ref: str = "42", context: str = "", **extra) -> DiscussionTrigger:
    return DiscussionTrigger(type=trigger_type, project_path="/p", ref=ref, context=context, **extra)


CODE_WATCH_CONTEXT = "Location: src/auth.ts\nSignal: Missing validation\nSnippet: if (token) {"


class TestOpeningMessage:
    def test_pr_review_includes_url(self):
        message = build_opening_message(
            _trigger(TriggerType.PR_REVIEW, pr_url="https://github.com/o/r/pull/42"),
            rng=random.Random(1),
        )
        assert "#42 - https://github.com/o/r/pull/42" in message

    def test_build_failure_truncates_context(self):
        message = build_opening_message(_trigger(TriggerType.BUILD_FAILURE, ref="main", context="x" * 900))
        assert message.startswith("Build broke on main.")
        assert message.endswith("x" * 500)
        assert "x" * 501 not in message

    def test_prd_kickoff(self):
        assert "Picking up auth-v2" in build_opening_message(_trigger(TriggerType.PRD_KICKOFF, ref="auth-v2"))

    def test_code_watch_is_stable_and_includes_snippet(self):
        trigger = _trigger(TriggerType.CODE_WATCH, ref="src/auth.ts:88", context=CODE_WATCH_CONTEXT)
        first = build_opening_message(trigger, rng=random.Random(1))
        second = build_opening_message(trigger, rng=random.Random(2))
        assert first == second
        assert "src/auth.ts" in first
        assert "Missing validation" in first
        assert first.endswith("```\nif (token) {\n```")

    def test_code_watch_without_fields_uses_context(self):
        message = build_opening_message(_trigger(TriggerType.CODE_WATCH, context="raw scanner output"))
        assert message == "raw scanner output"

    def test_issue_review_is_stable(self):
        trigger = _trigger(TriggerType.ISSUE_REVIEW, ref="acme/api#12")
        assert build_opening_message(trigger) == build_opening_message(trigger)
        assert "acme/api#12" in build_opening_message(trigger)


class TestCodeWatchContext:
    def test_parse(self):
        assert parse_code_watch_context(CODE_WATCH_CONTEXT) == (
            "src/auth.ts",
            "Missing validation",
            "if (token) {",
        )

    def test_issue_title(self):
        trigger = _trigger(TriggerType.CODE_WATCH, context="Location: src/auth.ts\nSignal: Missing validation")
        assert build_issue_title_from_trigger(trigger) == "fix: Missing validation at src/auth.ts"

    def test_issue_title_defaults(self):
        assert build_issue_title_from_trigger(_trigger(TriggerType.CODE_WATCH)) == (
            "fix: code signal at unknown location"
        )

    @pytest.mark.parametrize(
        "text",
        [
            "```\ncode\n```",
            "see src/auth.ts:42",
            "diff --git a/x b/x",
            "@@ -1,3 +1,4 @@",
            "const token = read()",
        ],
    )
    def test_concrete_code_context(self, text):
        assert has_concrete_code_context(text)

    def test_vague_context(self):
        assert not has_concrete_code_context("auth seems sketchy")


class TestThreadHistory:
    def test_formats_and_skips_empty(self):
        messages = [
            ThreadMessage(ts="1", text="Opened #42", username="Dev"),
            ThreadMessage(ts="2", text="   "),
            ThreadMessage(ts="3", text="looks\n  fine", username=None),
        ]
        assert format_thread_history(messages) == "Dev: Opened #42\nTeammate: looks fine"


class TestContributionPrompt:
    def test_sections(self, maya, roster):
        prompt = build_contribution_prompt(
            maya,
            _trigger(TriggerType.PR_REVIEW, context="Adds retries"),
            "Dev: Opened #42",
            round=1,
            roadmap_context="- Rate limit the API",
            teammates=roster,
        )
        assert prompt.startswith("You are Maya, Security Reviewer.")
        assert "Dev (implementer)" in prompt
        assert "Maya (security reviewer)" not in prompt
        assert "Trigger: pr_review - 42" in prompt
        assert "## Roadmap Priorities" in prompt
        assert "First round" in prompt
        assert "final round" not in prompt.lower()

    def test_final_round_and_empty_history(self, maya):
        prompt = build_contribution_prompt(maya, _trigger(TriggerType.PR_REVIEW), "", round=2)
        assert "Round: 2/2 (final round - wrap up)" in prompt
        assert "(Thread just started)" in prompt
        assert "Final round: be decisive" in prompt
        assert "## Roadmap Priorities" not in prompt

    def test_issue_review_guidance(self, carlos):
        prompt = build_contribution_prompt(carlos, _trigger(TriggerType.ISSUE_REVIEW, ref="o/r#1"), "", round=1)
        assert "Issue Review Guidance:" in prompt
        assert "READY, CLOSE, or DRAFT" in prompt

    def test_context_is_capped(self, maya):
        prompt = build_contribution_prompt(maya, _trigger(TriggerType.PR_REVIEW, context="y" * 5000), "", round=1)
        assert "y" * 2000 in prompt
        assert "y" * 2001 not in prompt


class TestLeadPrompts:
    def test_consensus_prompt(self, carlos):
        prompt = build_consensus_prompt(carlos, "", round=2)
        assert "(No thread history available)" in prompt
        assert "APPROVE:" in prompt and "CHANGES:" in prompt and "HUMAN:" in prompt

    def test_issue_verdict_prompt(self, carlos):
        prompt = build_issue_review_verdict_prompt(carlos, "Maya: dup of #3")
        assert "Maya: dup of #3" in prompt
        assert "READY:" in prompt and "CLOSE:" in prompt and "DRAFT:" in prompt


class TestAdHocPrompt:
    def test_casual_message(self):
        assert is_casual_message("hey team, happy friday")
        assert not is_casual_message("hey team, the build is failing")

    def test_casual_guidance(self, dev, roster):
        prompt = build_ad_hoc_reply_prompt(dev, "morning everyone", teammates=roster)
        assert "Your teammates:" in prompt
        assert "casual social message" in prompt

    def test_technical_with_links(self, dev):
        prompt = build_ad_hoc_reply_prompt(
            dev,
            "is this bug real?",
            history_text="Maya: maybe",
            project_context="Referenced links:\n- Docs",
        )
        assert "If the message is technical" in prompt
        assert "Thread so far:\nMaya: maybe" in prompt
        assert "linked URLs" in prompt


class TestProactivePrompt:
    def test_sections(self, maya, roster):
        prompt = build_proactive_prompt(
            maya,
            project_context="Current channel project: night-watch-cli.",
            roadmap_context="### Now\n- Ship webhook retries",
            teammates=roster,
        )
        assert prompt.startswith("You are Maya, Security Reviewer.")
        assert "Your teammates: Dev (implementer), Carlos (tech lead), Priya (qa engineer)." in prompt
        assert "Project context: Current channel project: night-watch-cli." in prompt
        assert "Roadmap/PRD status:\n### Now\n- Ship webhook retries" in prompt
        assert "write exactly: SKIP" in prompt

    def test_optional_sections_omitted(self, dev):
        prompt = build_proactive_prompt(dev)
        assert "Your teammates" not in prompt
        assert "Project context" not in prompt
        assert "Roadmap/PRD status" not in prompt
