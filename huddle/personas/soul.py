"""
Compile a persona's soul, style and skill layers into a system prompt.
"""

from typing import Optional

from huddle.models.persona import Persona

AIISH_WORDS_TO_AVOID = [
    "additionally",
    "moreover",
    "pivotal",
    "crucial",
    "landscape",
    "underscore",
    "testament",
    "showcase",
    "vibrant",
]

CANNED_CHATBOT_PHRASES = [
    "great question",
    "of course",
    "certainly",
    "you're absolutely right",
    "i hope this helps",
    "let me know if you'd like",
]

_HUMAN_VOICE_RULES = [
    "You are a teammate in a chat thread. Write like one: short, direct, no performance.",
    f"Never use these chatbot tells: {', '.join(CANNED_CHATBOT_PHRASES)}.",
    f"Avoid AI filler words: {', '.join(AIISH_WORDS_TO_AVOID)}.",
    'No formulaic rhetoric ("not just X, but Y"), no lists of three, no hype.',
    "Contractions are normal. Fragments are fine. Vary the rhythm.",
    'Say concrete things. "The auth middleware has no rate limit" beats '
    '"we should consider security improvements."',
    "If you have nothing to add, say so in three words or fewer.",
    "When unsure, name exactly what is unclear instead of hedging.",
    "No markdown in chat: no headings, no bullets, no bold.",
]

_OPERATING_RULES = [
    'Never break character. Never say "as an AI" or "I\'m happy to help."',
    "You have opinions. Use them.",
    "Keep messages to 1-2 sentences unless someone asked for detail.",
    "Emoji: one at most, only when it fits. Default to none.",
    "Tag teammates by name when their expertise is relevant.",
]


def _bullets(items: list[str], prefix: str = "") -> list[str]:
    return [f"- {prefix}{item}" for item in items]


def compile_soul(persona: Persona, memory: Optional[str] = None) -> str:
    """
    Build the system prompt a persona speaks with.

    Args:
        persona: The persona snapshot.
        memory: Optional notes appended as a ``## Memory`` section.

    Returns:
        ``persona.system_prompt_override`` when set, otherwise the compiled prompt.
    """
    if persona.system_prompt_override:
        return persona.system_prompt_override

    soul, style, skill = persona.soul, persona.style, persona.skill
    lines = [f"# {persona.name} - {persona.role}", "", "## Who I Am", soul.who_i_am, ""]

    if soul.worldview:
        lines += ["## Worldview", *_bullets(soul.worldview), ""]

    if soul.opinions:
        lines.append("## Opinions")
        for domain, takes in soul.opinions.items():
            lines.append(f"### {domain}")
            lines += _bullets(takes)
        lines.append("")

    if soul.tensions:
        lines += ["## Tensions", *_bullets(soul.tensions), ""]

    if soul.boundaries:
        lines += ["## Boundaries", *_bullets(soul.boundaries, prefix="Won't: "), ""]

    if style.voice_principles or style.sentence_structure or style.tone:
        lines.append("## Voice & Style")
        if style.voice_principles:
            lines.append(f"- Principles: {style.voice_principles}")
        if style.sentence_structure:
            lines.append(f"- Rhythm: {style.sentence_structure}")
        if style.tone:
            lines.append(f"- Tone: {style.tone}")
        lines.append("")

    if style.rhetorical_moves:
        lines += ["### Rhetorical Moves", *_bullets(style.rhetorical_moves), ""]

    if style.quick_reactions:
        lines.append("### Quick Reactions")
        lines += [f"- When {emotion}: {reaction}" for emotion, reaction in style.quick_reactions.items()]
        lines.append("")

    if style.words_used:
        lines.append(f"### Words I Use: {', '.join(style.words_used)}")
    if style.words_avoided:
        lines.append(f"### Words I Never Use: {', '.join(style.words_avoided)}")

    emoji_list = " ".join(style.emoji_usage.favorites)
    emoji_line = f"### Emoji Use: {style.emoji_usage.frequency}"
    if emoji_list:
        emoji_line += f" ({emoji_list})"
    lines.append(emoji_line)
    if style.emoji_usage.context_rules:
        lines.append(f"### Emoji Context: {style.emoji_usage.context_rules}")
    lines.append("")

    if style.anti_patterns:
        lines.append("### Anti-Patterns (Never Sound Like This)")
        lines += [f'- ❌ "{ap.example}" ({ap.why})' for ap in style.anti_patterns]
        lines.append("")

    if style.good_examples:
        lines.append("### Examples of My Voice")
        lines += [f'- ✅ "{example}"' for example in style.good_examples]
        lines.append("")

    lines += ["## How to Sound Human", *_bullets(_HUMAN_VOICE_RULES), ""]

    lines += ["## Operating Rules", *_bullets(_OPERATING_RULES)]
    if emoji_list:
        lines.append(f"- If you do use an emoji, prefer: {emoji_list}")
    lines += _bullets(skill.additional_instructions)

    if skill.modes:
        lines += ["", "## Modes"]
        lines += [f"- **{mode}**: {behavior}" for mode, behavior in skill.modes.items()]

    if memory and memory.strip():
        lines += ["", "## Memory", memory.strip()]

    return "\n".join(lines)
