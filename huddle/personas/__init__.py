"""
Persona selection, scoring, prompt compilation and roster loading.
"""

from huddle.personas.registry import (
    PersonaConfigError,
    PersonaNotFoundError,
    PersonaRegistry,
    PersonaRegistryError,
)
from huddle.personas.resolver import (
    PersonaDomain,
    extract_mention_handles,
    find_dev,
    find_lead,
    find_persona,
    find_qa,
    find_security,
    get_participating_personas,
    get_persona_domain,
    resolve_mentioned_personas,
    resolve_personas_by_plain_name,
    score_persona_for_text,
    select_follow_up_persona,
)
from huddle.personas.soul import compile_soul

__all__ = [
    "PersonaConfigError",
    "PersonaNotFoundError",
    "PersonaRegistry",
    "PersonaRegistryError",
    "PersonaDomain",
    "extract_mention_handles",
    "find_dev",
    "find_lead",
    "find_persona",
    "find_qa",
    "find_security",
    "get_participating_personas",
    "get_persona_domain",
    "resolve_mentioned_personas",
    "resolve_personas_by_plain_name",
    "score_persona_for_text",
    "select_follow_up_persona",
    "compile_soul",
]
