"""
Tests for the PersonaRegistry class.

Tests cover:
- Loading from YAML configuration files
- Loading from dictionaries with invalid entries skipped
- Retrieval and active filtering
- Error handling for missing and malformed files
- Hot reload detection
- The shipped roster
"""

import os
import time
from pathlib import Path

import pytest
import yaml

from huddle.personas.registry import (
    PersonaConfigError,
    PersonaNotFoundError,
    PersonaRegistry,
    PersonaRegistryError,
)

SHIPPED_ROSTER = Path(__file__).resolve().parents[2] / "config" / "personas.yaml"


# ==================
# Fixtures
# ==================


@pytest.fixture
def personas_yaml(tmp_path):
    """Write a small roster to a temporary YAML file."""
    config = {
        "personas": {
            "maya": {
                "name": "Maya",
                "role": "Security Reviewer",
                "soul": {"who_i_am": "AppSec.", "expertise": ["auth", "owasp"]},
                "style": {"emoji_usage": {"frequency": "never"}},
            },
            "priya": {"name": "Priya", "role": "QA Engineer"},
            "ghost": {"name": "Ghost", "role": "Retired", "is_active": False},
        }
    }
    path = tmp_path / "personas.yaml"
    path.write_text(yaml.safe_dump(config), encoding="utf-8")
    return path


@pytest.fixture
def registry(personas_yaml) -> PersonaRegistry:
    registry = PersonaRegistry()
    registry.load_from_yaml(str(personas_yaml))
    return registry


# ==================
# Loading
# ==================


class TestLoading:
    def test_load_from_yaml(self, registry):
        assert registry.persona_count == 3
        assert registry.load_errors == []

    def test_file_order_preserved(self, registry):
        assert [p.id for p in registry.list_personas()] == ["maya", "priya", "ghost"]

    def test_nested_sections_parsed(self, registry):
        maya = registry.get_persona("maya")
        assert maya.expertise == ["auth", "owasp"]
        assert maya.style.emoji_usage.frequency == "never"

    def test_invalid_entries_skipped(self):
        registry = PersonaRegistry()
        count = registry.load_from_dict(
            {
                "ok": {"name": "Ok", "role": "Dev"},
                "no_role": {"name": "NoRole"},
                "not_a_map": "oops",
            }
        )
        assert count == 1
        assert len(registry.load_errors) == 2

    def test_missing_file(self, tmp_path):
        with pytest.raises(PersonaRegistryError, match="not found"):
            PersonaRegistry().load_from_yaml(str(tmp_path / "nope.yaml"))

    def test_wrong_extension(self, tmp_path):
        path = tmp_path / "personas.json"
        path.write_text("{}", encoding="utf-8")
        with pytest.raises(PersonaRegistryError, match="YAML"):
            PersonaRegistry().load_from_yaml(str(path))

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("personas: [unclosed", encoding="utf-8")
        with pytest.raises(PersonaRegistryError, match="parse"):
            PersonaRegistry().load_from_yaml(str(path))

    def test_no_personas_section(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("other: 1\n", encoding="utf-8")
        with pytest.raises(PersonaConfigError):
            PersonaRegistry().load_from_yaml(str(path))

    def test_all_entries_invalid(self, tmp_path):
        path = tmp_path / "invalid.yaml"
        path.write_text(yaml.safe_dump({"personas": {"x": {"name": "X"}}}), encoding="utf-8")
        with pytest.raises(PersonaConfigError, match="No personas"):
            PersonaRegistry().load_from_yaml(str(path))


# ==================
# Retrieval
# ==================


class TestRetrieval:
    def test_get_unknown(self, registry):
        with pytest.raises(PersonaNotFoundError, match="Available personas"):
            registry.get_persona("nobody")

    def test_active_personas(self, registry):
        assert [p.id for p in registry.active_personas()] == ["maya", "priya"]

    def test_has_persona(self, registry):
        assert registry.has_persona("maya")
        assert not registry.has_persona("nobody")


# ==================
# Hot Reload
# ==================


class TestReload:
    def test_reload_without_load(self):
        with pytest.raises(PersonaRegistryError):
            PersonaRegistry().reload()

    def test_needs_reload_after_edit(self, registry, personas_yaml):
        assert registry.needs_reload() is False

        future = time.time() + 10
        os.utime(personas_yaml, (future, future))
        assert registry.needs_reload() is True

        assert registry.reload() == 3


class TestShippedRoster:
    def test_loads_four_archetypes(self):
        registry = PersonaRegistry()
        assert registry.load_from_yaml(str(SHIPPED_ROSTER)) == 4
        assert {p.name for p in registry.list_personas()} == {"Dev", "Carlos", "Maya", "Priya"}
