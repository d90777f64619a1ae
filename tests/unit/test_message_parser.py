"""
Unit tests for MessageParser.

Covers:
  - Normalization and inbound event unwrapping
  - The five-condition ignore gate
  - Job, provider, issue pickup and issue review intents
  - GitHub and generic URL extraction
"""

import pytest

from huddle.chat.message_parser import MessageParser
from huddle.models.chat import ChatProvider, InboundEvent, JobName


@pytest.fixture
def parser() -> MessageParser:
    return MessageParser()


def _event(**overrides) -> InboundEvent:
    fields = {"type": "message", "user": "U1", "text": "hi", "channel": "C1", "ts": "1.0"}
    fields.update(overrides)
    return InboundEvent(**fields)


class TestNormalization:
    """Tests for normalize_for_parsing and message keys."""

    def test_lowercases_and_collapses_whitespace(self, parser):
        assert parser.normalize_for_parsing("  Hello   WORLD  ") == "hello world"

    def test_keeps_path_characters(self, parser):
        assert parser.normalize_for_parsing("Check src/auth.ts now!") == "check src/auth.ts now"

    def test_message_key_defaults_type(self, parser):
        assert parser.build_inbound_message_key("C1", "1.0", None) == "C1:1.0:message"
        assert parser.build_inbound_message_key("C1", "1.0", "app_mention") == "C1:1.0:app_mention"


class TestExtractInboundEvent:
    """Tests for unwrapping events from Events API payloads."""

    def test_top_level_event(self, parser):
        event = parser.extract_inbound_event({"event": {"type": "message", "text": "x"}})
        assert event.type == "message"
        assert event.text == "x"

    def test_nested_under_body(self, parser):
        event = parser.extract_inbound_event({"body": {"event": {"type": "app_mention"}}})
        assert event.type == "app_mention"

    def test_nested_under_payload(self, parser):
        event = parser.extract_inbound_event({"payload": {"event": {"channel": "C9"}}})
        assert event.channel == "C9"

    def test_first_present_wins(self, parser):
        event = parser.extract_inbound_event(
            {"event": {"text": "outer"}, "body": {"event": {"text": "inner"}}}
        )
        assert event.text == "outer"

    def test_missing_event(self, parser):
        assert parser.extract_inbound_event({"type": "event_callback"}) is None


class TestIgnoreGate:
    """Each ignore condition applies on its own."""

    def test_plain_user_message_passes(self, parser):
        assert parser.should_ignore_inbound_slack_event(_event(), "UBOT") is False

    @pytest.mark.parametrize(
        "overrides",
        [
            {"channel": None},
            {"ts": None},
            {"user": None},
            {"subtype": "message_changed"},
            {"bot_id": "B1"},
            {"user": "UBOT"},
        ],
    )
    def test_ignored(self, parser, overrides):
        assert parser.should_ignore_inbound_slack_event(_event(**overrides), "UBOT") is True

    def test_no_bot_user_id(self, parser):
        assert parser.should_ignore_inbound_slack_event(_event(user="UBOT"), None) is False


class TestAmbientTeamMessage:
    def test_greeting_to_team(self, parser):
        assert parser.is_ambient_team_message("Hey guys, how is everyone doing today and this week?")

    def test_short_greeting(self, parser):
        assert parser.is_ambient_team_message("morning! hi all") is False
        assert parser.is_ambient_team_message("hi all")

    def test_not_a_greeting(self, parser):
        assert parser.is_ambient_team_message("the build is red") is False


class TestJobRequest:
    """Tests for parse_slack_job_request."""

    def test_run_with_project_hint(self, parser):
        request = parser.parse_slack_job_request("run yarn verify on night-watch-cli project")
        assert request.job == JobName.RUN
        assert request.project_hint == "night-watch-cli"
        assert request.pr_number is None
        assert request.fix_conflicts is False

    def test_inferred_review_with_conflicts(self, parser):
        request = parser.parse_slack_job_request("can someone look at #42, seeing merge conflicts")
        assert request.job == JobName.REVIEW
        assert request.pr_number == "42"
        assert request.fix_conflicts is True

    def test_pr_url_supplies_number_and_repo_hint(self, parser):
        request = parser.parse_slack_job_request(
            "please review PR https://github.com/acme/api/pull/17"
        )
        assert request.job == JobName.REVIEW
        assert request.pr_number == "17"
        assert request.project_hint == "api"

    def test_keyword_hint_skips_stopwords(self, parser):
        request = parser.parse_slack_job_request("qa for the checkout flow")
        assert request.job == JobName.QA
        assert request.project_hint is None

    def test_pr_reference_without_request_language(self, parser):
        assert parser.parse_slack_job_request("#42 landed yesterday") is None

    def test_no_keyword_no_pr(self, parser):
        assert parser.parse_slack_job_request("what do we think about the new logo") is None

    def test_mentions_are_ignored(self, parser):
        request = parser.parse_slack_job_request("<@U123> review #7 please")
        assert request.job == JobName.REVIEW
        assert request.pr_number == "7"


class TestIssuePickup:
    """Tests for parse_slack_issue_pickup_request."""

    def test_direct_issue_url(self, parser):
        request = parser.parse_slack_issue_pickup_request(
            "I'll pick up https://github.com/o/r/issues/7"
        )
        assert request.issue_number == "7"
        assert request.repo_hint == "r"
        assert request.issue_url == "https://github.com/o/r/issues/7"

    def test_board_view_link(self, parser):
        request = parser.parse_slack_issue_pickup_request(
            "can you tackle https://github.com/orgs/acme/projects/3/views/1?pane=issue&issue=acme%7Cweb%7C88"
        )
        assert request.issue_number == "88"
        assert request.repo_hint == "web"

    def test_please_this_issue(self, parser):
        request = parser.parse_slack_issue_pickup_request(
            "please look at this issue https://github.com/o/r/issues/3"
        )
        assert request.issue_number == "3"

    def test_link_without_intent(self, parser):
        assert parser.parse_slack_issue_pickup_request("https://github.com/o/r/issues/7") is None

    def test_pull_request_is_not_an_issue(self, parser):
        assert parser.parse_slack_issue_pickup_request("pick up https://github.com/o/r/pull/7") is None


class TestProviderRequest:
    """Tests for parse_slack_provider_request."""

    def test_bare_provider(self, parser):
        request = parser.parse_slack_provider_request("claude fix the flaky tests")
        assert request.provider == ChatProvider.CLAUDE
        assert request.prompt == "fix the flaky tests"
        assert request.project_hint is None

    def test_polite_prefix_and_project(self, parser):
        request = parser.parse_slack_provider_request(
            "can you run codex on api: investigate CI failures"
        )
        assert request.provider == ChatProvider.CODEX
        assert request.project_hint == "api"
        assert request.prompt == "investigate CI failures"

    def test_stopword_hint_is_dropped(self, parser):
        request = parser.parse_slack_provider_request("claude on it: rerun the job")
        assert request.project_hint is None
        assert request.prompt == "rerun the job"

    def test_empty_prompt(self, parser):
        assert parser.parse_slack_provider_request("claude") is None
        assert parser.parse_slack_provider_request("codex for api:") is None

    def test_provider_not_leading(self, parser):
        assert parser.parse_slack_provider_request("I asked claude yesterday") is None


class TestIssueReviewable:
    def test_direct_link(self, parser):
        reviewable = parser.parse_slack_issue_reviewable(
            "thoughts? <https://github.com/acme/api/issues/12>"
        )
        assert reviewable.issue_ref == "acme/api#12"
        assert reviewable.owner == "acme"
        assert reviewable.repo == "api"
        assert reviewable.issue_number == "12"

    def test_board_link_is_not_reviewable(self, parser):
        assert (
            parser.parse_slack_issue_reviewable(
                "https://github.com/orgs/acme/projects/3?issue=acme%7Capi%7C12"
            )
            is None
        )


class TestUrlExtraction:
    def test_github_issue_and_pr_urls(self, parser):
        text = (
            "see https://github.com/a/b/issues/1 and https://github.com/a/b/pull/2 "
            "but not https://github.com/a/b"
        )
        assert parser.extract_github_issue_urls(text) == [
            "https://github.com/a/b/issues/1",
            "https://github.com/a/b/pull/2",
        ]

    def test_generic_urls_dedupe_and_skip_github(self, parser):
        text = (
            "<https://docs.example.com/a|docs> and https://blog.example.com/post "
            "https://blog.example.com/post https://github.com/a/b/issues/1"
        )
        assert parser.extract_generic_urls(text) == [
            "https://docs.example.com/a",
            "https://blog.example.com/post",
        ]
