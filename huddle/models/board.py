"""
Issue board models.
"""

from enum import Enum

from pydantic import BaseModel, Field


class BoardColumn(str, Enum):
    """Columns of the project board, in workflow order."""

    DRAFT = "Draft"
    READY = "Ready"
    IN_PROGRESS = "In Progress"
    REVIEW = "Review"
    DONE = "Done"


class BoardIssue(BaseModel):
    number: int = Field(..., ge=1)
    title: str
    url: str
    column: BoardColumn = BoardColumn.DRAFT
    body: str = ""
