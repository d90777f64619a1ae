"""
Unit tests for Slack request signature verification.
"""

import pytest

from huddle.utils.slack_signature import compute_slack_signature, validate_slack_signature

SECRET = "s3cret"
BODY = b'{"type":"event_callback"}'
TS = "1700000000"


class TestValidateSlackSignature:
    def test_valid(self):
        signature = compute_slack_signature(BODY, TS, SECRET)
        assert validate_slack_signature(BODY, TS, signature, SECRET, now=1700000010)

    def test_tampered_body(self):
        signature = compute_slack_signature(BODY, TS, SECRET)
        assert not validate_slack_signature(b"{}", TS, signature, SECRET, now=1700000010)

    def test_wrong_secret(self):
        signature = compute_slack_signature(BODY, TS, "other")
        assert not validate_slack_signature(BODY, TS, signature, SECRET, now=1700000010)

    @pytest.mark.parametrize("age", [301, -301])
    def test_stale_or_future_timestamp(self, age):
        signature = compute_slack_signature(BODY, TS, SECRET)
        assert not validate_slack_signature(BODY, TS, signature, SECRET, now=1700000000 + age)

    def test_window_edge_is_accepted(self):
        signature = compute_slack_signature(BODY, TS, SECRET)
        assert validate_slack_signature(BODY, TS, signature, SECRET, now=1700000300)

    @pytest.mark.parametrize(
        "timestamp, signature",
        [(None, "v0=abc"), (TS, None), ("not-a-number", "v0=abc"), (TS, "v1=abc")],
    )
    def test_malformed_headers(self, timestamp, signature):
        assert not validate_slack_signature(BODY, timestamp, signature, SECRET, now=1700000000)
