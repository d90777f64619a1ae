"""
Orchestration module for huddle.

This package contains the deliberation engine, consensus evaluation, board
escalation, reply humanizing and inbound message routing.
"""

from huddle.orchestration.collaborators import (
    BoardProvider,
    BoardProviderFactory,
    ChatTransport,
    ContributionGenerator,
    DiscussionRepository,
    JobDispatch,
    JobDispatcher,
)
from huddle.orchestration.consensus import (
    ConsensusEvaluator,
    IssueVerdict,
    LeadDecision,
    parse_consensus_decision,
    parse_issue_verdict,
)
from huddle.orchestration.deliberation import (
    DeliberationEngine,
    DeliberationError,
    DiscussionNotFoundError,
)
from huddle.orchestration.escalation import BoardEscalation
from huddle.orchestration.humanizer import HumanizerCadence, humanize_reply, is_skip_message
from huddle.orchestration.interaction import (
    InteractionRouter,
    resolve_project_by_hint,
    resolve_target_project,
)

__all__ = [
    "BoardProvider",
    "BoardProviderFactory",
    "ChatTransport",
    "ContributionGenerator",
    "DiscussionRepository",
    "JobDispatch",
    "JobDispatcher",
    "ConsensusEvaluator",
    "IssueVerdict",
    "LeadDecision",
    "parse_consensus_decision",
    "parse_issue_verdict",
    "DeliberationEngine",
    "DeliberationError",
    "DiscussionNotFoundError",
    "BoardEscalation",
    "HumanizerCadence",
    "humanize_reply",
    "is_skip_message",
    "InteractionRouter",
    "resolve_project_by_hint",
    "resolve_target_project",
]
