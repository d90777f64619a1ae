"""
Opening messages and prompt builders for deliberations.

Everything here is pure text assembly: no I/O, no state. The engine and
the consensus/escalation helpers call these to produce what gets posted or
sent to the contribution generator.
"""

import random
import re
from typing import Optional, Sequence

from huddle.models.discussion import DiscussionTrigger, ThreadMessage, TriggerType
from huddle.models.persona import Persona
from huddle.utils.text import collapse_whitespace

MAX_ROUNDS = 2
CONTEXT_PROMPT_MAX_CHARS = 2000

_LOCATION_RE = re.compile(r"^Location: (.+)$", re.MULTILINE)
_SIGNAL_RE = re.compile(r"^Signal: (.+)$", re.MULTILINE)
_SNIPPET_RE = re.compile(r"^Snippet: (.+)$", re.MULTILINE)

_CONCRETE_CODE_RES = [
    re.compile(r"```"),
    re.compile(r"(^|\s)(src|test|scripts|web)/[^\s:]+\.[A-Za-z0-9]+(?::\d+)?"),
    re.compile(r"\bdiff --git\b"),
    re.compile(r"@@\s[-+]\d+"),
    re.compile(r"\b(function|class|const|let|if\s*\(|try\s*\{|catch\s*\()"),
]

_CASUAL_RE = re.compile(
    r"\b(hey|hi|hello|yo|sup|happy|morning|afternoon|evening|friday|weekend"
    r"|alive|there|guys|team|everyone|folks)\b",
    re.IGNORECASE,
)
_TECHNICAL_RE = re.compile(
    r"\b(bug|error|crash|fail|test|pr|code|build|deploy|security|auth|token"
    r"|vuln|diff|commit|review|issue|impl)\b",
    re.IGNORECASE,
)


# ======================
# Code-watch context
# ======================

def parse_code_watch_context(context: str) -> tuple[str, str, str]:
    """``(location, signal, snippet)`` from ``Location:/Signal:/Snippet:`` lines."""

    def _field(pattern: re.Pattern) -> str:
        match = pattern.search(context)
        return match.group(1).strip() if match else ""

    return _field(_LOCATION_RE), _field(_SIGNAL_RE), _field(_SNIPPET_RE)


def build_issue_title_from_trigger(trigger: DiscussionTrigger) -> str:
    """
    Git-style issue title for a code_watch finding.

    >>> build_issue_title_from_trigger(DiscussionTrigger(
    ...     type="code_watch", project_path="/p", ref="r",
    ...     context="Location: src/auth.ts\\nSignal: Missing validation"))
    'fix: Missing validation at src/auth.ts'
    """
    location, signal, _ = parse_code_watch_context(trigger.context)
    return f"fix: {signal or 'code signal'} at {location or 'unknown location'}"


def has_concrete_code_context(context: str) -> bool:
    """True if the text carries a code block, source path, diff hunk or code keyword."""
    return any(pattern.search(context) for pattern in _CONCRETE_CODE_RES)


def _ref_hash(ref: str) -> int:
    return sum(ord(char) for char in ref)


# ======================
# Opening messages
# ======================

def build_opening_message(
    trigger: DiscussionTrigger, rng: Optional[random.Random] = None
) -> str:
    """
    First post of a new discussion thread, written as the implementer.

    pr_review openers are picked at random; code_watch and issue_review
    openers are picked from the ref so re-renders are stable.
    """
    rng = rng or random.Random()

    if trigger.type == TriggerType.PR_REVIEW:
        pr_ref = f"#{trigger.ref}"
        pr_with_url = f"{pr_ref} - {trigger.pr_url}" if trigger.pr_url else pr_ref
        openers = [
            f"Opened {pr_with_url}. Ready for eyes.",
            f"Just opened {pr_with_url}. Anyone free to review?",
            f"{pr_with_url} is up. Tagging for review.",
            f"Opened {pr_with_url}. Let me know if you spot anything.",
        ]
        return rng.choice(openers)

    if trigger.type == TriggerType.BUILD_FAILURE:
        return f"Build broke on {trigger.ref}. Looking into it.\n\n{trigger.context[:500]}"

    if trigger.type == TriggerType.PRD_KICKOFF:
        return f"Picking up {trigger.ref}. Going to start carving out the implementation."

    if trigger.type == TriggerType.CODE_WATCH:
        location, signal, snippet = parse_code_watch_context(trigger.context)
        if location and signal:
            openers = [
                f"{location} - {signal}.",
                f"Flagging {location}: {signal}.",
                f"Caught something in {location}: {signal}.",
                f"{location} pinged the scanner - {signal}.",
                f"Noticed this in {location}: {signal}.",
            ]
            opener = openers[_ref_hash(trigger.ref) % len(openers)]
            return f"{opener}\n```\n{snippet}\n```" if snippet else opener
        return trigger.context[:600]

    if trigger.type == TriggerType.ISSUE_REVIEW:
        openers = [
            f"Taking a look at {trigger.ref}. What do we think?",
            f"Reviewing {trigger.ref}. Sharing notes in a sec.",
            f"Got eyes on {trigger.ref}. Let's figure out if this is real.",
            f"{trigger.ref} came up. Quick review?",
        ]
        return openers[_ref_hash(trigger.ref) % len(openers)]

    return trigger.context[:500]


# ======================
# Thread history
# ======================

def format_thread_history(messages: Sequence[ThreadMessage]) -> str:
    """``Speaker: text`` per non-empty message; unnamed speakers are "Teammate"."""
    lines = []
    for message in messages:
        body = collapse_whitespace(message.text)
        if not body:
            continue
        speaker = (message.username or "").strip() or "Teammate"
        lines.append(f"{speaker}: {body}")
    return "\n".join(lines)


def _teammate_line(persona: Persona, teammates: Sequence[Persona]) -> str:
    others = [f"{p.name} ({p.role.lower()})" for p in teammates if p.id != persona.id]
    if not others:
        return "You're in a Slack thread with your team. This is a real conversation, not a report."
    return (
        f"You're in a Slack thread with your teammates: {', '.join(others)}. "
        "This is a real conversation, not a report."
    )


# ======================
# Contribution prompt
# ======================

def build_contribution_prompt(
    persona: Persona,
    trigger: DiscussionTrigger,
    thread_history: str,
    round: int,
    max_rounds: int = MAX_ROUNDS,
    roadmap_context: str = "",
    teammates: Sequence[Persona] = (),
) -> str:
    """
    User prompt for one persona's turn in a deliberation round.

    Args:
        persona: The speaker
        trigger: What the discussion is about
        thread_history: Output of ``format_thread_history``
        round: Current round (1-based)
        max_rounds: Rounds allowed before a decision is forced
        roadmap_context: Roadmap digest; adds a priorities section when set
        teammates: Personas named in the roster line
    """
    is_first_round = round == 1
    is_final_round = round >= max_rounds

    lines = [
        f"You are {persona.name}, {persona.role}.",
        _teammate_line(persona, teammates),
        "",
        f"Trigger: {trigger.type.value} - {trigger.ref}",
        f"Round: {round}/{max_rounds}{' (final round - wrap up)' if is_final_round else ''}",
        "",
        "## Context",
        trigger.context[:CONTEXT_PROMPT_MAX_CHARS],
        "",
    ]

    if roadmap_context:
        lines += [
            "## Roadmap Priorities",
            roadmap_context,
            "",
        ]

    lines += [
        "## Thread So Far",
        thread_history or "(Thread just started)",
        "",
        "## How to respond",
        "Step 1: Read the thread and decide whether you have something new to add.",
        "Step 2: Write a short Slack message. 1 to 2 sentences, under ~180 chars when possible.",
    ]
    if roadmap_context:
        lines.append(
            "Ground your feedback in the project roadmap when it is relevant; "
            "flag work that drifts from the listed priorities."
        )

    if is_first_round:
        lines.append("- First round: give your initial take from your angle. Be specific.")
    else:
        lines.append(
            "- Follow-up round: respond to what others said. Agree, push back, or add something new."
        )

    lines += [
        "- React to one specific point already in the thread (use teammate names when available).",
        "- Never repeat a point that's already been made in similar words.",
        "- Back your take with one concrete artifact from context: a file path, symbol, diff hunk or log line.",
        "- Cite code as path/to/file.ts#L42 so teammates can jump straight to it.",
        "- Reply with exactly SKIP only if you answer no to ALL three: do I have a new concern, "
        "a new piece of evidence, or a direct answer to a teammate?",
        "- Talk like a teammate, not an assistant. No pleasantries, no filler.",
        "- Stay in your lane. Only comment on your domain unless something crosses into it.",
        "- You can hand off by name (\"Maya should look at the auth here\").",
        "- If you have a concern, name it specifically and suggest a direction.",
        "- No markdown formatting. No bullet lists. No headings. Just a message.",
        "- Emojis: use one only if it genuinely fits. Default to none.",
        "- Never start with \"Great question\", \"Of course\", \"I hope this helps\", or similar.",
        "- Never say \"as an AI\" or break character.",
        "- Only reference PR numbers, issue numbers, or URLs that appear in the Context or Thread above. "
        "Never invent or guess links.",
    ]
    if is_final_round:
        lines.append("- Final round: be decisive. State your position clearly.")

    if trigger.type == TriggerType.ISSUE_REVIEW:
        lines += [
            "",
            "Issue Review Guidance:",
            "- Is this issue actually valid? Does the codebase have this problem, or is it already fixed?",
            "- Is it worth tracking? Ready (prioritize now), Draft (valid but not urgent), "
            "or Close (invalid, duplicate, won't fix).",
            "- End your message with a clear lean toward READY, CLOSE, or DRAFT.",
            "- Example: \"Repro is solid and it blocks the release. READY.\"",
            "- Example: \"Already fixed by the retry change last week. CLOSE.\"",
        ]

    lines += ["", "Write ONLY your message. No name prefix, no labels."]
    return "\n".join(lines)


# ======================
# Lead decisions
# ======================

def build_consensus_prompt(
    lead: Persona, history_text: str, round: int, max_rounds: int = MAX_ROUNDS
) -> str:
    return f"""You are {lead.name}, {lead.role}. You're wrapping up a team discussion.

Thread:
{history_text or '(No thread history available)'}

Round: {round}/{max_rounds}

Make the call. Are we done, do we need one more pass, or does a human need to weigh in?
- Keep it brief and decisive. No recap of the whole thread.
- If you approve, do not restate prior arguments.

Respond with EXACTLY one of these formats (include the prefix):
- APPROVE: [one short closing message in your voice, e.g. "Clean. Let's ship it."]
- CHANGES: [what specifically still needs work, e.g. "The handler in `src/api/handler.ts#L45` swallows the stack trace."]
- HUMAN: [why this needs a human decision, e.g. "Team is split on caching at the API or DB layer."]

Write the prefix and your message. Nothing else."""


def build_issue_review_verdict_prompt(lead: Persona, history_text: str) -> str:
    return f"""You are {lead.name}, {lead.role}. You're wrapping up a team issue review.

Thread:
{history_text or '(No thread history available)'}

Based on the discussion above, make the triage call for this issue.

Respond with EXACTLY one of these formats (include the prefix):
- READY: [why: move to Ready, the issue is valid and prioritized]
- CLOSE: [why: invalid, duplicate, or won't fix]
- DRAFT: [why: valid but needs more context or is lower priority]

Be concise and decisive. No recap of the whole thread. Write the prefix and your message. Nothing else."""


# ======================
# Ad-hoc replies
# ======================

def is_casual_message(text: str) -> bool:
    """Greeting or social chatter with no technical vocabulary."""
    return bool(_CASUAL_RE.search(text)) and not _TECHNICAL_RE.search(text)


def build_ad_hoc_reply_prompt(
    persona: Persona,
    incoming_text: str,
    history_text: str = "",
    project_context: str = "",
    teammates: Sequence[Persona] = (),
) -> str:
    """Prompt for a reply outside any formal discussion."""
    roster = ", ".join(f"{p.name} ({p.role.lower()})" for p in teammates if p.id != persona.id)

    parts = [f"You are {persona.name}, {persona.role}.\n"]
    if roster:
        parts.append(f"Your teammates: {roster}.\n")
    parts.append("\n")
    if project_context:
        parts.append(f"Project context:\n{project_context}\n\n")
    if history_text:
        parts.append(f"Thread so far:\n{history_text}\n\n")
    parts.append(f'Latest message: "{incoming_text}"\n\n')
    parts.append(
        "Respond in your own voice. This is Slack, keep it conversational, 1-3 sentences max.\n"
        "- Talk like a colleague who actually cares, not a bot. "
        "No \"Great question\", \"Of course\", or \"I hope this helps\".\n"
        "- Engage with the thread. If teammates said something you agree or disagree with, react to it directly.\n"
        "- Tag a teammate by name naturally if their domain is more relevant.\n"
    )

    if is_casual_message(incoming_text):
        parts.append(
            "This is a casual social message. Respond like a real colleague, not a bot. "
            "Be warm and brief. Don't force a work topic. 1-2 sentences.\n"
        )
    else:
        parts.append(
            "If the message is technical:\n"
            "- Base opinions on concrete evidence from context (file path, symbol, diff, or log detail).\n"
            "- If there's no concrete evidence, ask for the file or diff before opining.\n"
        )

    if "Referenced links:" in project_context:
        parts.append(
            "There are linked URLs in the context above and you have seen their title and summary. "
            "Reference what the link is actually about if relevant.\n"
        )

    parts.append(
        "- No markdown headings or bullet lists. Inline backticks and short code blocks are fine when quoting code.\n"
        "- Emojis: one max, only if it fits. Default to none.\n"
        "- If the question is outside your domain, say so briefly and redirect.\n"
        "- Only reference PR numbers, issue numbers, or URLs that appear in the context above. "
        "Never invent or guess links.\n\n"
        "Write only your reply. No name prefix."
    )
    return "".join(parts)


# ======================
# Issue writeups
# ======================

def build_issue_body_prompt(persona: Persona, context: str) -> str:
    return f"""You are {persona.name}, {persona.role}.
Write a concise GitHub issue body for this finding: explicit implementation plan,
testable phases, concrete verification steps, no vague filler.
Use this structure exactly (GitHub Markdown):

## Context
- Problem: one sentence
- Current behavior: one sentence
- Risk if ignored: one sentence

## Proposed Fix
- Primary approach
- Files likely touched (max 5, include paths when possible)

## Execution Plan
### Phase 1: [name]
- [ ] Implementation step
- [ ] Tests to add/update

### Phase 2: [name]
- [ ] Implementation step
- [ ] Tests to add/update

## Verification
- [ ] Automated: specific tests or commands to run
- [ ] Manual: one concrete validation step

## Done Criteria
- [ ] Bug condition is no longer reproducible
- [ ] Regression coverage is added
- [ ] Error handling/logging is clear and non-silent

Keep it under ~450 words. No greetings, no generic "future work" sections.

Context:
{context}"""


def build_code_candidate_prompt(
    persona: Persona, file_context: str, signal: str, location: str
) -> str:
    return (
        f"You are {persona.name}, {persona.role}.\n"
        "Your scanner flagged something. Before you bring it up with the team, "
        "read the actual code and decide if it's genuinely worth raising.\n\n"
        f"Signal: {signal}\n"
        f"Location: {location}\n\n"
        f"Code:\n```\n{file_context[:3000]}\n```\n\n"
        "Is this a real concern? Give your honest take in 1-2 sentences as a Slack message to the team.\n\n"
        "Rules:\n"
        "- If it's clearly fine (intentional, test code, well-handled, noise), respond with exactly: SKIP\n"
        "- If it's worth flagging, write what you'd drop in Slack in your own voice. Name the specific risk.\n"
        "- Sound like a teammate noticing something, not a scanner filing a report.\n"
        "- No markdown, no bullet points. No \"I noticed\" or \"The code has\".\n\n"
        "Write only your message or SKIP."
    )


def build_audit_triage_prompt(persona: Persona, project_name: str, report: str) -> str:
    return (
        f"You are {persona.name}, {persona.role}.\n"
        f"The code auditor just finished scanning {project_name} and wrote this report:\n\n"
        f"{report[:3000]}\n\n"
        "Should this be filed as a GitHub issue for the team to track?\n\n"
        "Rules:\n"
        "- If the findings are genuinely worth tracking (medium or high severity, real risk), reply with:\n"
        "  FILE: [one short sentence you'd drop in Slack, specific about what was found]\n"
        "- If everything is minor, intentional, or noise, reply with exactly: SKIP\n"
        "- Don't file issues for trivial noise.\n\n"
        "Write only FILE: [sentence] or SKIP."
    )


# ======================
# Proactive prompt
# ======================

def build_proactive_prompt(
    persona: Persona,
    project_context: str = "",
    roadmap_context: str = "",
    teammates: Sequence[Persona] = (),
) -> str:
    """Prompt for an unprompted top-level message in a quiet channel."""
    roster = ", ".join(f"{p.name} ({p.role.lower()})" for p in teammates if p.id != persona.id)

    parts = [f"You are {persona.name}, {persona.role}.\n"]
    if roster:
        parts.append(f"Your teammates: {roster}.\n")
    parts.append(
        "\nYou're posting an unprompted message in the team's Slack channel. "
        "The channel has been quiet. You want to share something useful, not just fill silence.\n\n"
    )
    if project_context:
        parts.append(f"Project context: {project_context}\n\n")
    if roadmap_context:
        parts.append(f"Roadmap/PRD status:\n{roadmap_context}\n\n")
    parts.append(
        "Write a SHORT proactive message (1-2 sentences) that does ONE of these:\n"
        "- Question a roadmap priority or ask if something should be reordered\n"
        "- Flag something you've been thinking about from your domain "
        "(security concern, test gap, architectural question, implementation idea)\n"
        "- Suggest an improvement or raise a \"have we thought about...\" question\n"
        "- Share a concrete observation about the current state of the project\n"
        "- Offer to kick off a task: \"I can run a review on X if nobody's on it\"\n\n"
        "Rules:\n"
        "- Stay in your lane. Only bring up things relevant to your expertise.\n"
        "- Be specific. Name the feature, file, or concern.\n"
        "- Sound like a teammate dropping a thought in chat, not making an announcement.\n"
        "- No markdown, headings, bullets. Just a message.\n"
        "- No \"Great question\", \"Just checking in\", or \"Hope everyone is doing well.\"\n"
        "- Emojis: one max, only if natural. Default to none.\n"
        "- Do not make up specific PR numbers, issue numbers, or URLs. "
        "If you don't have a concrete reference from context, speak in general terms.\n"
        "- If you genuinely have nothing useful to say, write exactly: SKIP\n\n"
        "Write only your message. No name prefix."
    )
    return "".join(parts)
