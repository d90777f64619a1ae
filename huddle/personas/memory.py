"""
Persona memory.

Each persona keeps per-project notes on disk::

    {base}/agents/{persona}/memories/{project}/core.md      permanent lessons
    {base}/agents/{persona}/memories/{project}/working.md   dated reflections

After a post the persona reflects on it and the lessons are appended to
working memory. A theme that recurs on three different days is synthesized
into a single ``[PATTERN]`` line and promoted to core. Working memory is
condensed by the model once it grows past ``MAX_MEMORY_LINES``; core memory
is never rewritten automatically.

File IO runs in a worker thread so the event loop never blocks on disk.
"""

import asyncio
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from huddle.models.persona import Persona
from huddle.utils.logging import get_logger
from huddle.utils.timestamps import utc_now

logger = get_logger(__name__)

MAX_MEMORY_LINES = 150
COMPACTION_TARGET_LINES = 60
CORE_CHAR_BUDGET = 4000
WORKING_CHAR_BUDGET = 8000
PROMOTION_THRESHOLD = 3

VALID_CATEGORIES = frozenset(
    {"PATTERN", "DECISION", "ARCHITECTURE", "OBSERVATION", "HYPOTHESIS", "TODO"}
)

COMPACTION_SYSTEM_PROMPT = (
    "You are a memory compaction assistant. Your job is to condense working memory "
    "while preserving actionable insights.\n"
    "Rules:\n"
    "- Preserve lessons with specific file references (path#L42-L45)\n"
    "- Merge related lessons into single, richer bullets\n"
    "- Keep category tags ([OBSERVATION], [HYPOTHESIS], [TODO]) intact\n"
    "- Drop vague entries that lack specifics\n"
    "- Respond only with categorized bullet points, no preamble."
)

SYNTHESIS_SYSTEM_PROMPT = (
    "You are a memory synthesis assistant. Respond only with a single bullet point."
)

STOP_WORDS = frozenset(
    {
        "a", "an", "the", "is", "are", "was", "were", "be", "been", "being",
        "have", "has", "had", "do", "does", "did", "will", "would", "could",
        "should", "may", "might", "shall", "to", "of", "in", "for", "on", "with",
        "at", "by", "from", "and", "or", "but", "not", "this", "that", "it",
        "its", "we", "you", "i", "they", "them", "their",
    }
)

_DATE_HEADER_RE = re.compile(r"^## (\d{4}-\d{2}-\d{2})")
_CATEGORY_RE = re.compile(r"^\[([A-Z]+)\]")
_NON_WORD_RE = re.compile(r"[^a-z0-9\s]")
_UNSAFE_PATH_RE = re.compile(r"[^\w.-]+")

LlmCaller = Callable[[str, str], Awaitable[str]]
"""``(system_prompt, user_prompt) -> text``."""


@dataclass
class ReflectionContext:
    """What just happened, as seen by the persona reflecting on it."""

    trigger_type: str
    outcome: str
    summary: str
    files_changed: list[str] = field(default_factory=list)


# ======================
# Prompts
# ======================

def _describe_context(context: ReflectionContext) -> str:
    files = (
        f" (files touched: {', '.join(context.files_changed)})" if context.files_changed else ""
    )
    return (
        f"a {context.trigger_type} event{files}, outcome: {context.outcome}. "
        f"Summary: {context.summary}"
    )


def _role_framing(role: str, description: str) -> str:
    r = role.lower()
    if "implementer" in r or "developer" in r:
        return (
            f"You just implemented/worked on {description}. "
            "What patterns, pitfalls, or conventions should you remember? "
            "Think like a developer who wants to avoid repeating mistakes."
        )
    if "lead" in r or "architect" in r:
        return (
            f"You just reviewed {description}. "
            "What architectural patterns, code quality issues, or decomposition lessons "
            "should you remember? Think like a tech lead tracking team patterns."
        )
    if "qa" in r or "quality" in r or "test" in r:
        return (
            f"You just tested {description}. "
            "What testing gaps, flaky patterns, or coverage lessons should you remember? "
            "Think like a QA engineer building institutional testing knowledge."
        )
    if "security" in r or "reviewer" in r:
        return (
            f"You just reviewed {description} for security. "
            "What vulnerability patterns, auth issues, or security lessons should you remember? "
            "Think like a security reviewer tracking threat patterns."
        )
    return (
        f"You just participated in {description}. "
        "What lessons, patterns, or observations should you remember for future interactions?"
    )


def build_reflection_prompt(persona: Persona, context: ReflectionContext) -> str:
    framing = _role_framing(persona.role, _describe_context(context))
    return (
        f"You are {persona.name}.\n\n"
        f"{framing}\n\n"
        'Respond with 1-3 concise bullet points (each starting with "- ") capturing the most '
        "important lessons. No preamble, no explanation outside the bullets. "
        "Be specific and actionable."
    )


def build_compaction_prompt(persona: Persona, current_memory: str) -> str:
    max_bullets = COMPACTION_TARGET_LINES // 2
    return (
        f"You are {persona.name}. Below is your accumulated memory log.\n\n"
        f"---\n{current_memory}\n---\n\n"
        f'Condense this into your top lessons, at most {max_bullets} bullet points starting with "- ". '
        "Keep the most important, actionable insights. Drop redundant or low-value entries. "
        "Respond only with the bullet list, no headers, no preamble."
    )


# ======================
# Parsing
# ======================

def parse_lessons(response: str) -> list[str]:
    """Bullet lines (``- ...``) of a model response, markers stripped."""
    lessons = []
    for line in response.splitlines():
        stripped = line.lstrip()
        if stripped.startswith("- "):
            lesson = stripped[2:].strip()
            if lesson:
                lessons.append(lesson)
    return lessons


def extract_category(lesson: str) -> Optional[str]:
    """The leading ``[CATEGORY]`` tag when it is a known one."""
    match = _CATEGORY_RE.match(lesson.strip())
    if not match or match.group(1) not in VALID_CATEGORIES:
        return None
    return match.group(1)


def parse_date_sections(content: str) -> list[tuple[str, list[str]]]:
    """``(date, lessons)`` per ``## YYYY-MM-DD`` section, in file order."""
    sections: list[tuple[str, list[str]]] = []
    for line in content.split("\n"):
        header = _DATE_HEADER_RE.match(line)
        if header:
            sections.append((header.group(1), []))
        elif sections and line.lstrip().startswith("- "):
            lesson = line.lstrip()[2:].strip()
            if lesson:
                sections[-1][1].append(lesson)
    return sections


def _significant_words(lesson: str) -> set[str]:
    words = _NON_WORD_RE.sub(" ", lesson.lower()).split()
    return {w for w in words if len(w) > 2 and w not in STOP_WORDS}


def lessons_similar(a: str, b: str) -> bool:
    """Two lessons share a theme when they have three significant words in common."""
    return len(_significant_words(a) & _significant_words(b)) >= 3


def _safe_segment(value: str) -> str:
    return _UNSAFE_PATH_RE.sub("_", value.strip()).lstrip(".") or "_"


# ======================
# Service
# ======================

class MemoryService:
    """
    Reads and grows persona memory files.

    Args:
        base_dir: Root directory (``~`` is expanded)
        today: Date used for section headers and promotion stamps
    """

    def __init__(self, base_dir: Union[str, Path], today: Callable[[], date] = lambda: utc_now().date()):
        self.base_dir = Path(base_dir).expanduser()
        self._today = today

    # ======================
    # Paths
    # ======================

    def memory_dir(self, persona_name: str, project_slug: str) -> Path:
        return (
            self.base_dir
            / "agents"
            / _safe_segment(persona_name)
            / "memories"
            / _safe_segment(project_slug)
        )

    def core_path(self, persona_name: str, project_slug: str) -> Path:
        return self.memory_dir(persona_name, project_slug) / "core.md"

    def working_path(self, persona_name: str, project_slug: str) -> Path:
        return self.memory_dir(persona_name, project_slug) / "working.md"

    def legacy_path(self, persona_name: str, project_slug: str) -> Path:
        return self.memory_dir(persona_name, project_slug) / "main.md"

    # ======================
    # Sync file helpers (run via asyncio.to_thread)
    # ======================

    @staticmethod
    def _read_text(path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    @staticmethod
    def _write_text(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")

    @staticmethod
    def _append_text(path: Path, content: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("a", encoding="utf-8") as f:
            f.write(content)

    def _migrate_legacy_sync(self, persona_name: str, project_slug: str) -> None:
        legacy = self.legacy_path(persona_name, project_slug)
        core = self.core_path(persona_name, project_slug)
        working = self.working_path(persona_name, project_slug)
        if legacy.exists() and not core.exists() and not working.exists():
            logger.info("memory_legacy_migrated", persona=persona_name, project=project_slug)
            legacy.rename(working)
            core.write_text("", encoding="utf-8")

    # ======================
    # Read / write
    # ======================

    async def get_memory(self, persona_name: str, project_slug: str) -> str:
        """
        Memory block for prompt injection.

        Core memory is cut to its first ``CORE_CHAR_BUDGET`` characters and
        working memory keeps its last ``WORKING_CHAR_BUDGET``. Returns "" when
        the persona has no memory for the project yet.
        """
        await asyncio.to_thread(self._migrate_legacy_sync, persona_name, project_slug)
        core = await asyncio.to_thread(self._read_text, self.core_path(persona_name, project_slug))
        working = await asyncio.to_thread(
            self._read_text, self.working_path(persona_name, project_slug)
        )
        core = (core or "")[:CORE_CHAR_BUDGET]
        working = (working or "")[-WORKING_CHAR_BUDGET:]
        if not core.strip() and not working.strip():
            return ""
        return f"## Core Lessons\n{core}\n## Working Memory\n{working}"

    async def append_reflection(
        self,
        persona_name: str,
        project_slug: str,
        lessons: list[str],
        category: Optional[str] = None,
    ) -> None:
        tag = f" [{category}]" if category else ""
        bullets = "\n".join(f"- {lesson}" for lesson in lessons)
        section = f"## {self._today().isoformat()}{tag}\n{bullets}\n\n"
        await asyncio.to_thread(
            self._append_text, self.working_path(persona_name, project_slug), section
        )
        logger.info(
            "memory_reflection_appended",
            persona=persona_name,
            project=project_slug,
            lessons=len(lessons),
        )

    async def promote_to_core(self, persona_name: str, project_slug: str, lesson: str) -> None:
        """Append a ``[PATTERN]`` line to core memory. Oversized core is only reported."""
        path = self.core_path(persona_name, project_slug)
        entry = f"- [PATTERN] {lesson} (promoted {self._today().isoformat()})\n"
        await asyncio.to_thread(self._append_text, path, entry)

        content = await asyncio.to_thread(self._read_text, path) or ""
        if len(content) > CORE_CHAR_BUDGET:
            logger.warning(
                "core_memory_over_budget",
                persona=persona_name,
                project=project_slug,
                size=len(content),
                budget=CORE_CHAR_BUDGET,
            )
        logger.info("memory_lesson_promoted", persona=persona_name, project=project_slug)

    async def compact(
        self, persona: Persona, project_slug: str, llm: LlmCaller
    ) -> bool:
        """
        Condense working memory once it exceeds ``MAX_MEMORY_LINES``.

        The model output replaces the file only when it is a bullet list of at
        most ``COMPACTION_TARGET_LINES`` lines.

        Returns:
            True if the file was rewritten
        """
        path = self.working_path(persona.name, project_slug)
        content = await asyncio.to_thread(self._read_text, path)
        if content is None or len(content.split("\n")) <= MAX_MEMORY_LINES:
            return False

        condensed = await llm(COMPACTION_SYSTEM_PROMPT, build_compaction_prompt(persona, content))
        lines = [line for line in condensed.split("\n") if line.strip()]
        if not condensed.lstrip().startswith("- ") or len(lines) > COMPACTION_TARGET_LINES:
            logger.warning(
                "memory_compaction_rejected",
                persona=persona.name,
                project=project_slug,
                condensed_lines=len(lines),
            )
            return False

        await asyncio.to_thread(self._write_text, path, condensed)
        logger.info("working_memory_compacted", persona=persona.name, project=project_slug)
        return True

    async def check_promotion(
        self, persona_name: str, project_slug: str, llm: LlmCaller
    ) -> list[str]:
        """
        Promote lesson themes seen on ``PROMOTION_THRESHOLD`` distinct days.

        Promoted lessons are removed from working memory.

        Returns:
            The working-memory lessons that were promoted
        """
        path = self.working_path(persona_name, project_slug)
        content = await asyncio.to_thread(self._read_text, path)
        if content is None:
            return []

        sections = parse_date_sections(content)
        if len(sections) < PROMOTION_THRESHOLD:
            return []
        dated = [(day, lesson) for day, lessons in sections for lesson in lessons]
        if len(dated) < PROMOTION_THRESHOLD:
            return []

        promoted: list[str] = []
        used: set[int] = set()
        for i, (day, lesson) in enumerate(dated):
            if i in used:
                continue
            group = [i]
            days = {day}
            for j in range(i + 1, len(dated)):
                if j not in used and lessons_similar(lesson, dated[j][1]):
                    group.append(j)
                    days.add(dated[j][0])
            if len(days) < PROMOTION_THRESHOLD:
                continue

            group_lessons = [dated[k][1] for k in group]
            prompt = (
                'Synthesize these related lessons into a single, concise core lesson '
                '(one bullet starting with "- [PATTERN] "):\n\n'
                + "\n".join(f"- {item}" for item in group_lessons)
            )
            synthesized = parse_lessons(await llm(SYNTHESIS_SYSTEM_PROMPT, prompt))
            if not synthesized:
                continue
            core_lesson = synthesized[0]
            if core_lesson.startswith("[PATTERN]"):
                core_lesson = core_lesson[len("[PATTERN]"):].strip()
            await self.promote_to_core(persona_name, project_slug, core_lesson)
            promoted.extend(group_lessons)
            used.update(group)

        if promoted:
            promoted_set = set(promoted)
            kept = [
                line
                for line in content.split("\n")
                if not (line.lstrip().startswith("- ") and line.lstrip()[2:].strip() in promoted_set)
            ]
            await asyncio.to_thread(self._write_text, path, "\n".join(kept))
            logger.info(
                "promoted_lessons_removed",
                persona=persona_name,
                project=project_slug,
                promoted=len(promoted),
            )
        return promoted

    async def reflect(
        self,
        persona: Persona,
        project_slug: str,
        context: ReflectionContext,
        llm: LlmCaller,
    ) -> list[str]:
        """
        Ask ``persona`` what it learned and persist the answer.

        Appends the lessons to working memory, then runs promotion and
        compaction.

        Returns:
            The lessons recorded, empty when the response had none
        """
        system = f"You are {persona.name}, {persona.role}. Respond only with bullet points, no preamble."
        lessons = parse_lessons(await llm(system, build_reflection_prompt(persona, context)))
        if not lessons:
            logger.debug(
                "reflection_empty",
                persona=persona.name,
                project=project_slug,
                trigger=context.trigger_type,
            )
            return []

        category = extract_category(lessons[0])
        logger.info(
            "persona_reflected",
            persona=persona.name,
            project=project_slug,
            trigger=context.trigger_type,
            outcome=context.outcome,
            lessons=len(lessons),
            category=category,
        )
        await self.append_reflection(persona.name, project_slug, lessons, category)
        await self.check_promotion(persona.name, project_slug, llm)
        await self.compact(persona, project_slug, llm)
        return lessons
