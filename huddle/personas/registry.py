"""
Persona Registry for huddle.

Loads the persona roster from a YAML file, validates each entry against the
Persona model and keeps the parsed snapshots. The roster is seeded into the
discussion repository at startup so the engine reads personas from one place.

YAML layout:

    personas:
      dev:
        name: Dev
        role: Implementer
        soul: {...}
        style: {...}
"""

import os
import time
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from huddle.models.persona import Persona
from huddle.utils.logging import get_logger

logger = get_logger(__name__)


class PersonaRegistryError(Exception):
    """Base exception for persona registry errors."""

    pass


class PersonaConfigError(PersonaRegistryError):
    """Raised when a persona definition is invalid."""

    pass


class PersonaNotFoundError(PersonaRegistryError):
    """Raised when a requested persona is not in the registry."""

    pass


class PersonaRegistry:
    """
    In-memory roster of persona definitions.

    Usage:
        registry = PersonaRegistry()
        registry.load_from_yaml("config/personas.yaml")
        maya = registry.get_persona("maya")
    """

    def __init__(self) -> None:
        self._personas: dict[str, Persona] = {}
        self._config_path: Optional[str] = None
        self._last_load_time: Optional[float] = None
        self._load_errors: list[str] = []

    # ==================
    # Loading Methods
    # ==================

    def load_from_yaml(self, config_path: str) -> int:
        """
        Load persona definitions from a YAML file.

        Args:
            config_path: Path to the personas YAML file

        Returns:
            Number of personas successfully loaded

        Raises:
            PersonaRegistryError: If the file cannot be read or parsed
            PersonaConfigError: If no valid persona definitions are found
        """
        path = Path(config_path)
        if not path.exists():
            raise PersonaRegistryError(f"Configuration file not found: {config_path}")

        if path.suffix not in (".yaml", ".yml"):
            raise PersonaRegistryError(
                f"Configuration file must be YAML (.yaml or .yml): {config_path}"
            )

        logger.info("Loading persona definitions from: %s", config_path)

        try:
            with open(path, "r", encoding="utf-8") as f:
                raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise PersonaRegistryError(f"Failed to parse YAML file: {e}") from e
        except OSError as e:
            raise PersonaRegistryError(f"Failed to read configuration file: {e}") from e

        if not raw_config or not isinstance(raw_config, dict):
            raise PersonaConfigError("Configuration file is empty or invalid")

        personas_data = raw_config.get("personas", {})
        if not personas_data:
            raise PersonaConfigError("No 'personas' section found in configuration")

        loaded_count = self.load_from_dict(personas_data)
        self._config_path = str(path.resolve())

        if loaded_count == 0:
            raise PersonaConfigError(
                f"No personas could be loaded. Errors: {'; '.join(self._load_errors)}"
            )
        return loaded_count

    def load_from_dict(self, personas_data: dict[str, dict[str, Any]]) -> int:
        """
        Load persona definitions keyed by persona id.

        Invalid entries are skipped and recorded in ``load_errors``.
        """
        self._personas.clear()
        self._load_errors.clear()

        for persona_id, persona_data in personas_data.items():
            try:
                self._personas[persona_id] = self._parse_persona(persona_id, persona_data)
            except PersonaConfigError as e:
                error_msg = f"Failed to load persona '{persona_id}': {e}"
                self._load_errors.append(error_msg)
                logger.warning(error_msg)

        self._last_load_time = time.time()
        logger.info(
            "Loaded %d personas (%d errors)", len(self._personas), len(self._load_errors)
        )
        return len(self._personas)

    # ==================
    # Retrieval Methods
    # ==================

    def get_persona(self, persona_id: str) -> Persona:
        """
        Raises:
            PersonaNotFoundError: If no persona with that id exists
        """
        persona = self._personas.get(persona_id)
        if persona is None:
            available = ", ".join(sorted(self._personas))
            raise PersonaNotFoundError(
                f"Persona '{persona_id}' not found. Available personas: {available}"
            )
        return persona

    def list_personas(self) -> list[Persona]:
        """All personas in file order."""
        return list(self._personas.values())

    def active_personas(self) -> list[Persona]:
        return [persona for persona in self._personas.values() if persona.is_active]

    def has_persona(self, persona_id: str) -> bool:
        return persona_id in self._personas

    @property
    def persona_count(self) -> int:
        return len(self._personas)

    @property
    def load_errors(self) -> list[str]:
        return list(self._load_errors)

    # ==================
    # Hot Reload
    # ==================

    def reload(self) -> int:
        """
        Raises:
            PersonaRegistryError: If no config file was previously loaded
        """
        if not self._config_path:
            raise PersonaRegistryError(
                "No configuration file has been loaded yet. Call load_from_yaml() first."
            )
        return self.load_from_yaml(self._config_path)

    def needs_reload(self) -> bool:
        """True if the YAML file changed since the last load."""
        if not self._config_path or not self._last_load_time:
            return False
        try:
            return os.path.getmtime(self._config_path) > self._last_load_time
        except OSError:
            return False

    # ==================
    # Internal Methods
    # ==================

    def _parse_persona(self, persona_id: str, data: Any) -> Persona:
        if not isinstance(data, dict):
            raise PersonaConfigError("definition must be a mapping")
        if not data.get("name"):
            raise PersonaConfigError("missing required field 'name'")
        if not data.get("role"):
            raise PersonaConfigError("missing required field 'role'")

        try:
            return Persona.model_validate({"id": persona_id, **data})
        except ValidationError as e:
            raise PersonaConfigError(str(e)) from e
