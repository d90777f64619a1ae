"""
Shared fixtures for the unit tests: a four-persona roster, a registered
project, settings with zero delays, a manual clock and the in-memory fakes.
"""

import random

import pytest

from fakes import FakeRepository, FakeTransport, ManualClock, make_persona
from huddle.chat.thread_state import ThreadStateManager
from huddle.config.settings import AppSettings
from huddle.models.persona import Persona
from huddle.models.project import BoardConfig, ProjectConfig


@pytest.fixture
def dev() -> Persona:
    return make_persona("dev", "Dev", "Implementer", ["typescript", "node", "implementation"])


@pytest.fixture
def carlos() -> Persona:
    return make_persona("carlos", "Carlos", "Tech Lead", ["architecture", "scalability"])


@pytest.fixture
def maya() -> Persona:
    return make_persona("maya", "Maya", "Security Reviewer", ["security", "auth", "owasp"])


@pytest.fixture
def priya() -> Persona:
    return make_persona("priya", "Priya", "QA Engineer", ["testing", "e2e", "playwright"])


@pytest.fixture
def roster(dev, carlos, maya, priya) -> list[Persona]:
    return [dev, carlos, maya, priya]


@pytest.fixture
def project() -> ProjectConfig:
    return ProjectConfig(
        name="night-watch-cli",
        path="/repos/night-watch-cli",
        slack_channel_id="C_PROJ",
        board=BoardConfig(enabled=True, repo="acme/night-watch-cli"),
    )


@pytest.fixture
def settings(project) -> AppSettings:
    return AppSettings(
        _env_file=None,
        slack_channel_prs="C_PRS",
        slack_channel_incidents="C_INC",
        slack_channel_eng="C_ENG",
        human_delay_min_seconds=0,
        human_delay_max_seconds=0,
        discussion_resume_delay_seconds=0,
        projects=[project],
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def thread_state(clock) -> ThreadStateManager:
    return ThreadStateManager(clock=clock, rng=random.Random(7))


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def repository(roster) -> FakeRepository:
    return FakeRepository(roster)
