"""
Tests for the request logging middleware (huddle/api/middleware.py).

Covers:
  - Request ID generation and passthrough
  - X-Request-ID header on responses
  - Slack retry headers bound into the log context
  - Context cleared after each request, including failed ones
"""

import pytest
import structlog
from fastapi import FastAPI
from starlette.testclient import TestClient

from huddle.api.middleware import RequestLoggingMiddleware
from huddle.utils.logging import clear_contextvars, setup_logging


@pytest.fixture(autouse=True)
def _reset_context():
    clear_contextvars()
    yield
    clear_contextvars()


@pytest.fixture
def seen_context():
    return {}


@pytest.fixture
def test_app(seen_context):
    """Minimal app with the middleware and a route that captures the bound context."""
    setup_logging(log_level="DEBUG", environment="development")

    app = FastAPI()
    app.add_middleware(RequestLoggingMiddleware)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.post("/slack/events")
    async def events():
        seen_context.update(structlog.contextvars.get_contextvars())
        return {"status": "accepted"}

    @app.get("/boom")
    async def boom():
        raise ValueError("test error")

    return app


@pytest.fixture
def client(test_app):
    return TestClient(test_app, raise_server_exceptions=False)


class TestRequestId:
    def test_generated(self, client):
        resp = client.post("/slack/events")
        assert resp.headers["X-Request-ID"].startswith("req-")

    def test_passthrough(self, client):
        resp = client.post("/slack/events", headers={"X-Request-ID": "custom-id-123"})
        assert resp.headers["X-Request-ID"] == "custom-id-123"

    def test_unique(self, client):
        ids = {client.get("/health").headers["X-Request-ID"] for _ in range(5)}
        assert len(ids) == 5


class TestContext:
    def test_request_fields_bound(self, client, seen_context):
        client.post("/slack/events", headers={"X-Request-ID": "r-1"})
        assert seen_context["request_id"] == "r-1"
        assert seen_context["method"] == "POST"
        assert seen_context["path"] == "/slack/events"
        assert "slack_retry_num" not in seen_context

    def test_slack_retry_bound(self, client, seen_context):
        client.post("/slack/events", headers={"X-Slack-Retry-Num": "2"})
        assert seen_context["slack_retry_num"] == "2"

    def test_error_returns_500_and_clears_context(self, client):
        resp = client.get("/boom")
        assert resp.status_code == 500
        assert structlog.contextvars.get_contextvars() == {}
