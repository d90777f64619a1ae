"""
Unit tests for roadmap parsing and digests.

Covers:
  - Checkbox and ### heading items across sections
  - Full digest for lead roles, summary for everyone else
  - Character caps and missing files
"""

from fakes import make_persona
from huddle.personas.roadmap import (
    DEFAULT_SECTION,
    RoadmapMode,
    compile_roadmap_context,
    compile_roadmap_for_persona,
    is_lead_role,
    load_roadmap_items,
    parse_roadmap,
)

ROADMAP = """\
# Roadmap

- [ ] Loose item

## Now
- [x] Ship login
- [ ] Rate limit the API
  Per token, not per IP.
- [ ] Audit logging

## Later
### Plugin system
Let teams add their own checks.

- [ ] One
- [ ] Two
- [ ] Three
- [ ] Four
"""


class TestParseRoadmap:
    def test_items_and_sections(self):
        items = parse_roadmap(ROADMAP)
        assert items[0].title == "Loose item"
        assert items[0].section == DEFAULT_SECTION

        rate_limit = next(item for item in items if item.title == "Rate limit the API")
        assert rate_limit.section == "Now"
        assert rate_limit.description == "Per token, not per IP."

        login = next(item for item in items if item.title == "Ship login")
        assert login.checked is True

    def test_heading_items(self):
        plugin = next(item for item in parse_roadmap(ROADMAP) if item.title == "Plugin system")
        assert plugin.section == "Later"
        assert plugin.description == "Let teams add their own checks."

    def test_empty(self):
        assert parse_roadmap("") == []


class TestDigests:
    def test_full_digest_counts_done(self):
        output = compile_roadmap_context(parse_roadmap(ROADMAP), RoadmapMode.FULL)
        assert "### Now (1/3 done)" in output
        assert "- [ ] Rate limit the API" in output
        assert "Per token, not per IP." in output
        assert "- 1 item completed" in output

    def test_summary_limits_later_sections(self):
        output = compile_roadmap_context(parse_roadmap(ROADMAP), RoadmapMode.SUMMARY)
        assert "- Ship login" not in output
        assert "- Loose item" in output
        assert "- Three" not in output
        assert "- Plugin system" in output
        assert "- Two" in output

    def test_cap(self):
        output = compile_roadmap_context(parse_roadmap(ROADMAP), RoadmapMode.FULL, max_chars=20)
        assert len(output) <= 20

    def test_no_items(self):
        assert compile_roadmap_context([], RoadmapMode.FULL) == ""

    def test_mode_follows_role(self):
        items = parse_roadmap(ROADMAP)
        lead = make_persona("carlos", "Carlos", "Tech Lead")
        qa = make_persona("priya", "Priya", "QA Engineer")
        assert "done)" in compile_roadmap_for_persona(lead, items)
        assert "done)" not in compile_roadmap_for_persona(qa, items)

    def test_is_lead_role(self):
        assert is_lead_role("Product Manager")
        assert is_lead_role("ARCHITECT")
        assert not is_lead_role("Security Reviewer")


class TestLoadRoadmap:
    def test_missing_file(self, tmp_path):
        assert load_roadmap_items(str(tmp_path)) == []

    def test_reads_project_root(self, tmp_path):
        (tmp_path / "ROADMAP.md").write_text(ROADMAP, encoding="utf-8")
        assert len(load_roadmap_items(str(tmp_path))) == 9
