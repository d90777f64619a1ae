"""
Persona resolution and relevance scoring.

Answers three questions about the roster:
  - who takes part in a deliberation for a given trigger type
  - which persona a message is really aimed at (mentions, plain names)
  - which persona is the best fit to follow up on a piece of text
"""

import re
from enum import Enum
from typing import Iterable, Optional, Sequence

from huddle.models.discussion import TriggerType
from huddle.models.persona import Persona
from huddle.utils.text import SLACK_USER_MENTION_RE, normalize_handle, normalize_text


class PersonaDomain(str, Enum):
    SECURITY = "security"
    QA = "qa"
    LEAD = "lead"
    DEV = "dev"
    GENERAL = "general"


# Classification is first-match-wins in this order. The alternations are
# unanchored on purpose: "\bqa|quality|test|e2e\b" matches "tester" too.
_DOMAIN_PATTERNS: list[tuple[PersonaDomain, re.Pattern]] = [
    (PersonaDomain.SECURITY, re.compile(r"\bsecurity|auth|pentest|owasp|crypt|vuln\b")),
    (PersonaDomain.QA, re.compile(r"\bqa|quality|test|e2e\b")),
    (PersonaDomain.LEAD, re.compile(r"\blead|architect|architecture|systems\b")),
    (PersonaDomain.DEV, re.compile(r"\bimplementer|developer|executor|engineer\b")),
]

_DOMAIN_SIGNALS: dict[PersonaDomain, re.Pattern] = {
    PersonaDomain.SECURITY: re.compile(
        r"\b(security|auth|vuln|owasp|xss|csrf|token|permission|exploit|threat)\b"
    ),
    PersonaDomain.QA: re.compile(r"\b(qa|test|testing|bug|e2e|playwright|regression|flaky)\b"),
    PersonaDomain.LEAD: re.compile(
        r"\b(architecture|architect|design|scalability|performance|tech debt|tradeoff|strategy)\b"
    ),
    PersonaDomain.DEV: re.compile(r"\b(implement|implementation|code|build|fix|patch|ship|pr)\b"),
}

NAME_MATCH_SCORE = 12
DOMAIN_SIGNAL_SCORE = 8
TOKEN_OVERLAP_SCORE = 2
FOLLOW_UP_MARGIN = 4
FOLLOW_UP_MIN_SCORE = 8

_MENTION_HANDLE_RE = re.compile(r"@([a-z0-9._-]{2,32})", re.IGNORECASE)
_TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")


# ======================
# Roster lookups
# ======================

def find_persona(
    personas: Sequence[Persona],
    names: Iterable[str],
    role_keywords: Iterable[str],
) -> Optional[Persona]:
    """
    Find a persona by exact name first, then by role keyword.

    Renamed personas are still found through their role.
    """
    wanted_names = {name.lower() for name in names}
    for persona in personas:
        if persona.name.lower() in wanted_names:
            return persona

    keywords = [keyword.lower() for keyword in role_keywords]
    for persona in personas:
        role = persona.role.lower()
        if any(keyword in role for keyword in keywords):
            return persona
    return None


def find_dev(personas: Sequence[Persona]) -> Optional[Persona]:
    return find_persona(personas, ["Dev"], ["implementer", "executor", "developer"])


def find_lead(personas: Sequence[Persona]) -> Optional[Persona]:
    return find_persona(personas, ["Carlos"], ["tech lead", "architect", "lead"])


def find_security(personas: Sequence[Persona]) -> Optional[Persona]:
    return find_persona(personas, ["Maya"], ["security reviewer", "security"])


def find_qa(personas: Sequence[Persona]) -> Optional[Persona]:
    return find_persona(personas, ["Priya"], ["qa", "quality assurance", "test"])


def get_participating_personas(
    trigger_type: TriggerType | str, personas: Sequence[Persona]
) -> list[Persona]:
    """
    Personas that take part in a deliberation for ``trigger_type``.

    Duplicates collapse by id. Falls back to the first persona so a
    non-empty roster never yields an empty discussion.
    """
    dev = find_dev(personas)
    lead = find_lead(personas)
    security = find_security(personas)
    qa = find_qa(personas)

    kind = trigger_type.value if isinstance(trigger_type, TriggerType) else trigger_type
    if kind in (TriggerType.PR_REVIEW.value, TriggerType.CODE_WATCH.value):
        ordered = [dev, lead, security, qa]
    elif kind in (TriggerType.BUILD_FAILURE.value, TriggerType.PRD_KICKOFF.value):
        ordered = [dev, lead]
    elif kind == TriggerType.ISSUE_REVIEW.value:
        ordered = [lead, security, qa, dev]
    else:
        ordered = [lead]

    selected: dict[str, Persona] = {}
    for persona in ordered:
        if persona is not None:
            selected.setdefault(persona.id, persona)

    if not selected and personas:
        return [personas[0]]
    return list(selected.values())


# ======================
# Scoring
# ======================

def get_persona_domain(persona: Persona) -> PersonaDomain:
    blob = f"{persona.role.lower()} {' '.join(persona.soul.expertise).lower()}"
    for domain, pattern in _DOMAIN_PATTERNS:
        if pattern.search(blob):
            return domain
    return PersonaDomain.GENERAL


def _persona_tokens(persona: Persona) -> set[str]:
    sources = [persona.role, *persona.soul.expertise]
    return {
        token
        for source in sources
        for token in _TOKEN_SPLIT_RE.split(source.lower())
        if len(token) >= 3
    }


def score_persona_for_text(text: str, persona: Persona) -> int:
    """
    Additive relevance of ``persona`` to ``text``.

    +12 when the persona's name appears, +8 when a domain signal in the
    text matches the persona's domain, +2 for each distinct 3+ character
    token shared with the persona's role or expertise.
    """
    normalized = normalize_text(text, preserve_paths=True)
    if not normalized:
        return 0

    score = 0
    if persona.name.lower() in normalized:
        score += NAME_MATCH_SCORE

    signal = _DOMAIN_SIGNALS.get(get_persona_domain(persona))
    if signal is not None and signal.search(normalized):
        score += DOMAIN_SIGNAL_SCORE

    persona_tokens = _persona_tokens(persona)
    text_tokens = {token for token in normalized.split(" ") if len(token) >= 3}
    score += TOKEN_OVERLAP_SCORE * len(text_tokens & persona_tokens)
    return score


def select_follow_up_persona(
    preferred: Persona, personas: Sequence[Persona], text: str
) -> Persona:
    """
    Keep talking to ``preferred`` unless someone else is clearly better.

    Switching requires the best score to beat the preferred persona's by
    at least 4 and to be at least 8 in absolute terms.
    """
    if not personas:
        return preferred

    preferred_score = score_persona_for_text(text, preferred)
    best, best_score = preferred, preferred_score
    for persona in personas:
        score = score_persona_for_text(text, persona)
        if score > best_score:
            best, best_score = persona, score

    if (
        best.id != preferred.id
        and best_score >= preferred_score + FOLLOW_UP_MARGIN
        and best_score >= FOLLOW_UP_MIN_SCORE
    ):
        return best
    return preferred


# ======================
# Mentions
# ======================

def extract_mention_handles(text: str) -> list[str]:
    """
    ``"@maya please check this"`` -> ``["maya"]``.

    Handles are normalized and de-duplicated in order of appearance.
    """
    handles: list[str] = []
    for raw in _MENTION_HANDLE_RE.findall(text):
        handle = normalize_handle(raw)
        if handle and handle not in handles:
            handles.append(handle)
    return handles


def resolve_mentioned_personas(text: str, personas: Sequence[Persona]) -> list[Persona]:
    handles = extract_mention_handles(text)
    if not handles:
        return []

    by_handle = {normalize_handle(persona.name): persona for persona in personas}
    resolved: list[Persona] = []
    for handle in handles:
        persona = by_handle.get(handle)
        if persona is not None and persona not in resolved:
            resolved.append(persona)
    return resolved


def resolve_personas_by_plain_name(text: str, personas: Sequence[Persona]) -> list[Persona]:
    """
    Personas whose name appears as a whole word, no ``@`` needed.

    Covers "<@BOT> maya check this PR": the user-id token is removed first.
    """
    stripped = SLACK_USER_MENTION_RE.sub("", text).lower()
    resolved: list[Persona] = []
    seen: set[str] = set()
    for persona in personas:
        if persona.id in seen:
            continue
        if re.search(rf"\b{re.escape(persona.name.lower())}\b", stripped):
            resolved.append(persona)
            seen.add(persona.id)
    return resolved
