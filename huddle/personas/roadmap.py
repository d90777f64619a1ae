"""
Roadmap context for persona prompts.

Parses a project's ROADMAP.md into items and compiles one of two digests:
  - full: every section with pending items and descriptions (lead roles)
  - summary: pending titles from the first section plus three from each
    later section (everyone else)
"""

import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from huddle.models.persona import Persona
from huddle.utils.logging import get_logger

logger = get_logger(__name__)

ROADMAP_FILENAME = "ROADMAP.md"
DEFAULT_SECTION = "General"
DEFAULT_MAX_FULL = 3000
DEFAULT_MAX_SUMMARY = 800
SUMMARY_ITEMS_PER_LATER_SECTION = 3

LEAD_KEYWORDS = ("lead", "architect", "product", "manager", "pm", "director")

_SECTION_RE = re.compile(r"^##\s+(.+)$")
_CHECKBOX_RE = re.compile(r"^-\s+\[([ xX])\]\s+(.+)$")
_HEADING_ITEM_RE = re.compile(r"^###\s+(.+)$")


class RoadmapMode(str, Enum):
    FULL = "full"
    SUMMARY = "summary"


@dataclass
class RoadmapItem:
    title: str
    section: str
    description: str = ""
    checked: bool = False


def parse_roadmap(content: str) -> list[RoadmapItem]:
    """
    Parse roadmap markdown.

    ``## Heading`` starts a section. Items are either checkboxes
    (``- [ ] title`` with indented description lines) or ``### title``
    headings whose description runs until the next heading.
    """
    items: list[RoadmapItem] = []
    section = DEFAULT_SECTION
    current: Optional[RoadmapItem] = None
    description_lines: list[str] = []
    current_is_heading = False

    def flush() -> None:
        nonlocal current, description_lines
        if current is not None:
            current.description = "\n".join(description_lines).strip()
            items.append(current)
        current = None
        description_lines = []

    for raw_line in content.splitlines():
        line = raw_line.rstrip()

        section_match = _SECTION_RE.match(line)
        if section_match:
            flush()
            section = section_match.group(1).strip()
            continue

        heading_match = _HEADING_ITEM_RE.match(line)
        if heading_match:
            flush()
            current = RoadmapItem(title=heading_match.group(1).strip(), section=section)
            current_is_heading = True
            continue

        checkbox_match = _CHECKBOX_RE.match(line)
        if checkbox_match:
            flush()
            current = RoadmapItem(
                title=checkbox_match.group(2).strip(),
                section=section,
                checked=checkbox_match.group(1).lower() == "x",
            )
            current_is_heading = False
            continue

        if current is None:
            continue
        if current_is_heading:
            description_lines.append(line)
        elif raw_line[:1] in (" ", "\t") and line.strip():
            description_lines.append(line.strip())
        elif line.strip():
            # Unindented text ends a checkbox item's description
            flush()

    flush()
    return items


def load_roadmap_items(project_path: str) -> list[RoadmapItem]:
    """Read ``ROADMAP.md`` from the project root; missing or unreadable means no items."""
    path = Path(project_path) / ROADMAP_FILENAME
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning("roadmap_read_failed", path=str(path), error=str(e))
        return []
    return parse_roadmap(content)


def is_lead_role(role: str) -> bool:
    """Case-insensitive substring check, so free-form role names work."""
    lower = role.lower()
    return any(keyword in lower for keyword in LEAD_KEYWORDS)


def _group_by_section(items: list[RoadmapItem]) -> dict[str, list[RoadmapItem]]:
    grouped: dict[str, list[RoadmapItem]] = {}
    for item in items:
        grouped.setdefault(item.section, []).append(item)
    return grouped


def _build_full_digest(items: list[RoadmapItem]) -> str:
    parts: list[str] = []
    for section, section_items in _group_by_section(items).items():
        done = [item for item in section_items if item.checked]
        pending = [item for item in section_items if not item.checked]

        parts.append(f"### {section} ({len(done)}/{len(section_items)} done)\n")
        for item in pending:
            parts.append(f"- [ ] {item.title}\n")
            if item.description:
                parts.append(f"  {item.description[:200].replace(chr(10), ' ')}\n")
        if done:
            plural = "s" if len(done) > 1 else ""
            parts.append(f"- {len(done)} item{plural} completed\n")
        parts.append("\n")
    return "".join(parts)


def _build_summary(items: list[RoadmapItem]) -> str:
    pending = [item for item in items if not item.checked]
    if not pending:
        return ""

    parts: list[str] = []
    for index, (section, section_items) in enumerate(_group_by_section(pending).items()):
        limit = len(section_items) if index == 0 else SUMMARY_ITEMS_PER_LATER_SECTION
        parts.append(f"### {section}\n")
        parts += [f"- {item.title}\n" for item in section_items[:limit]]
        parts.append("\n")
    return "".join(parts)


def compile_roadmap_context(
    items: list[RoadmapItem],
    mode: RoadmapMode,
    max_chars: Optional[int] = None,
) -> str:
    """
    Render roadmap items for prompt injection.

    Returns:
        The digest capped at ``max_chars``, or "" when there is nothing to show.
    """
    if not items:
        return ""
    if max_chars is None:
        max_chars = DEFAULT_MAX_FULL if mode == RoadmapMode.FULL else DEFAULT_MAX_SUMMARY

    output = _build_full_digest(items) if mode == RoadmapMode.FULL else _build_summary(items)
    return output[:max_chars].strip()


def compile_roadmap_for_persona(persona: Persona, items: list[RoadmapItem]) -> str:
    """Lead roles get the full digest; everyone else the summary."""
    mode = RoadmapMode.FULL if is_lead_role(persona.role) else RoadmapMode.SUMMARY
    return compile_roadmap_context(items, mode)
