"""
Registered project configuration.
"""

import os
from typing import Optional

from pydantic import BaseModel, Field


class BoardConfig(BaseModel):
    """GitHub board settings for one project."""

    enabled: bool = True
    repo: Optional[str] = Field(
        None,
        description="owner/repo the board issues live in",
    )


class ProjectConfig(BaseModel):
    """A project the team can talk about and open issues for."""

    name: str = Field(..., description="Short project name, e.g. 'night-watch-cli'")
    path: str = Field(..., description="Local checkout path")
    slack_channel_id: Optional[str] = Field(
        None,
        description="Channel dedicated to this project",
    )
    board: Optional[BoardConfig] = None

    @property
    def basename(self) -> str:
        return os.path.basename(self.path.rstrip("/\\")) or self.path

    @property
    def has_board(self) -> bool:
        return bool(self.board and self.board.enabled and self.board.repo)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "name": "night-watch-cli",
                    "path": "/srv/projects/night-watch-cli",
                    "slack_channel_id": "C0123456",
                    "board": {"enabled": True, "repo": "acme/night-watch-cli"},
                }
            ]
        }
    }
