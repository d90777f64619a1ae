"""
Unit tests for persona system prompt compilation.

Covers:
  - Override short-circuit
  - Section ordering and omission of empty layers
  - Emoji line, anti-patterns and examples
  - Memory section
"""

from huddle.models.persona import (
    AntiPattern,
    EmojiUsage,
    Persona,
    PersonaSkill,
    PersonaSoul,
    PersonaStyle,
)
from huddle.personas.soul import CANNED_CHATBOT_PHRASES, compile_soul


def _full_persona() -> Persona:
    return Persona(
        id="maya",
        name="Maya",
        role="Security Reviewer",
        soul=PersonaSoul(
            who_i_am="I read every auth diff twice.",
            worldview=["Trust nothing from the client."],
            opinions={"auth": ["Sessions beat JWTs for most apps."]},
            tensions=["Hates blocking releases."],
            boundaries=["approve unreviewed crypto"],
        ),
        style=PersonaStyle(
            tone="dry",
            words_used=["threat model"],
            emoji_usage=EmojiUsage(frequency="rare", favorites=["🔒"]),
            anti_patterns=[AntiPattern(example="Great catch!", why="empty praise")],
            good_examples=["Token never expires. That's a problem."],
        ),
        skill=PersonaSkill(
            modes={"pr_review": "Look for auth and input handling first."},
            additional_instructions=["Name the file when flagging a risk."],
        ),
    )


class TestCompileSoul:
    def test_override_wins(self):
        persona = Persona(id="x", name="X", role="Dev", system_prompt_override="You are X.")
        assert compile_soul(persona, memory="ignored") == "You are X."

    def test_header_and_sections_in_order(self):
        prompt = compile_soul(_full_persona())
        assert prompt.startswith("# Maya - Security Reviewer")
        order = [
            "## Who I Am",
            "## Worldview",
            "## Opinions",
            "## Tensions",
            "## Boundaries",
            "## Voice & Style",
            "## How to Sound Human",
            "## Operating Rules",
            "## Modes",
        ]
        positions = [prompt.index(heading) for heading in order]
        assert positions == sorted(positions)

    def test_boundaries_prefixed(self):
        assert "- Won't: approve unreviewed crypto" in compile_soul(_full_persona())

    def test_emoji_and_voice_examples(self):
        prompt = compile_soul(_full_persona())
        assert "### Emoji Use: rare (🔒)" in prompt
        assert "- If you do use an emoji, prefer: 🔒" in prompt
        assert '- ❌ "Great catch!" (empty praise)' in prompt
        assert "Token never expires" in prompt
        assert "- **pr_review**: Look for auth and input handling first." in prompt
        assert "- Name the file when flagging a risk." in prompt

    def test_minimal_persona_omits_empty_sections(self):
        prompt = compile_soul(Persona(id="p", name="Priya", role="QA Engineer"))
        assert "## Worldview" not in prompt
        assert "## Modes" not in prompt
        assert "### Emoji Use: rare" in prompt
        assert CANNED_CHATBOT_PHRASES[0] in prompt

    def test_memory_appended_when_present(self):
        persona = Persona(id="p", name="Priya", role="QA Engineer")
        assert compile_soul(persona, memory="  flaky suite on main  ").endswith(
            "## Memory\nflaky suite on main"
        )
        assert "## Memory" not in compile_soul(persona, memory="   ")
