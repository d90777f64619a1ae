"""
Pydantic models for personas.

A persona is the identity and behavioral profile one simulated teammate
speaks with: role, worldview, voice rules, skill modes and an optional
per-persona model override. Personas are owned by the repository and are
treated as immutable snapshots for the duration of an operation.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from huddle.utils.timestamps import utc_now


class PersonaSoul(BaseModel):
    """What a persona believes and cares about."""

    who_i_am: str = Field("", description="Short first-person bio")
    worldview: list[str] = Field(default_factory=list)
    opinions: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Strong takes grouped by domain",
    )
    expertise: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    tensions: list[str] = Field(default_factory=list)
    boundaries: list[str] = Field(
        default_factory=list,
        description="Things the persona will not do",
    )
    pet_peeves: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class EmojiUsage(BaseModel):
    frequency: str = Field("rare", description="never, rare, moderate or frequent")
    favorites: list[str] = Field(default_factory=list)
    context_rules: str = ""

    model_config = {"frozen": True}


class AntiPattern(BaseModel):
    example: str
    why: str

    model_config = {"frozen": True}


class PersonaStyle(BaseModel):
    """How a persona sounds."""

    voice_principles: str = ""
    sentence_structure: str = ""
    tone: str = ""
    words_used: list[str] = Field(default_factory=list)
    words_avoided: list[str] = Field(default_factory=list)
    emoji_usage: EmojiUsage = Field(default_factory=EmojiUsage)
    quick_reactions: dict[str, str] = Field(default_factory=dict)
    rhetorical_moves: list[str] = Field(default_factory=list)
    anti_patterns: list[AntiPattern] = Field(default_factory=list)
    good_examples: list[str] = Field(default_factory=list)
    bad_examples: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class PersonaSkill(BaseModel):
    """Mode-specific behaviour and extra operating rules."""

    modes: dict[str, str] = Field(default_factory=dict)
    interpolation_rules: dict[str, str] = Field(default_factory=dict)
    additional_instructions: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}


class PersonaModelConfig(BaseModel):
    """
    Per-persona LLM override.

    Personas without one use the application's default model.
    """

    provider: str = Field(
        "anthropic",
        description="LLM provider name (anthropic, openai, ollama)",
    )
    model: str = Field(..., description="Model identifier")
    base_url: Optional[str] = Field(None, description="Custom API base URL")
    temperature: float = Field(0.8, ge=0.0, le=2.0)
    max_tokens: int = Field(1024, ge=1, le=200000)

    model_config = {"frozen": True}


class Persona(BaseModel):
    """
    A simulated teammate taking part in deliberations.

    Identity is ``id``; ``name`` is what appears in chat and what users
    mention. ``role`` drives domain classification and participant
    selection.
    """

    id: str = Field(..., description="Stable persona identifier")
    name: str = Field(..., min_length=1, description="Display name")
    role: str = Field(..., description="Role title, e.g. 'Security Reviewer'")
    avatar_url: Optional[str] = Field(None, description="Avatar shown in chat")
    soul: PersonaSoul = Field(default_factory=PersonaSoul)
    style: PersonaStyle = Field(default_factory=PersonaStyle)
    skill: PersonaSkill = Field(default_factory=PersonaSkill)
    llm: Optional[PersonaModelConfig] = Field(
        None,
        description="Model override for this persona",
    )
    system_prompt_override: Optional[str] = Field(
        None,
        description="Use this system prompt verbatim instead of compiling one",
    )
    is_active: bool = True
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = {
        "frozen": True,
        "json_schema_extra": {
            "examples": [
                {
                    "id": "maya",
                    "name": "Maya",
                    "role": "Security Reviewer",
                    "soul": {
                        "who_i_am": "AppSec engineer who reads every auth diff twice.",
                        "expertise": ["application security", "auth", "owasp"],
                    },
                }
            ]
        },
    }

    @property
    def expertise(self) -> list[str]:
        return list(self.soul.expertise)
