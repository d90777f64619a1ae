"""
Pydantic models for huddle.

Provides data models for:
- Personas and their behavioral profiles
- Discussion triggers and discussion state
- Inbound chat events and parsed chat intents
- Board issues and registered projects
"""

from huddle.models.persona import (
    Persona,
    PersonaSoul,
    PersonaStyle,
    PersonaSkill,
    PersonaModelConfig,
    EmojiUsage,
    AntiPattern,
)
from huddle.models.discussion import (
    TriggerType,
    DiscussionStatus,
    ConsensusResult,
    DiscussionTrigger,
    Discussion,
    ThreadMessage,
    PostedMessage,
)
from huddle.models.chat import (
    InboundEvent,
    JobName,
    ChatProvider,
    JobRequest,
    ProviderRequest,
    IssuePickupRequest,
    IssueReviewable,
)
from huddle.models.board import BoardColumn, BoardIssue
from huddle.models.project import BoardConfig, ProjectConfig

__all__ = [
    # Persona models
    "Persona",
    "PersonaSoul",
    "PersonaStyle",
    "PersonaSkill",
    "PersonaModelConfig",
    "EmojiUsage",
    "AntiPattern",
    # Discussion models
    "TriggerType",
    "DiscussionStatus",
    "ConsensusResult",
    "DiscussionTrigger",
    "Discussion",
    "ThreadMessage",
    "PostedMessage",
    # Chat models
    "InboundEvent",
    "JobName",
    "ChatProvider",
    "JobRequest",
    "ProviderRequest",
    "IssuePickupRequest",
    "IssueReviewable",
    # Board / project
    "BoardColumn",
    "BoardIssue",
    "BoardConfig",
    "ProjectConfig",
]
