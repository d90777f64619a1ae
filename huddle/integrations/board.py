"""
GitHub issue board backed by PyGithub.

Board columns are modelled as ``board:<Column>`` labels on repository
issues, so a board needs nothing more than a repo and a token. PyGithub is
synchronous; calls run in a worker thread so the event loop stays free.

Usage:
    factory = GitHubBoardProviderFactory(token="ghp_...", projects=settings.projects)
    board = factory.for_project("/srv/projects/api")
    if board:
        issue = await board.create_issue("fix: ...", body, BoardColumn.IN_PROGRESS)
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional, Sequence

from github import Auth, Github, GithubException
from github.Repository import Repository as GithubRepository

from huddle.models.board import BoardColumn, BoardIssue
from huddle.models.project import ProjectConfig

logger = logging.getLogger(__name__)

COLUMN_LABEL_PREFIX = "board:"
COLUMN_LABEL_COLOR = "0e8a16"


def column_label(column: BoardColumn) -> str:
    return f"{COLUMN_LABEL_PREFIX}{column.value}"


def column_from_labels(labels: Sequence[str]) -> BoardColumn:
    """First ``board:`` label that names a known column; Draft otherwise."""
    for label in labels:
        if label.startswith(COLUMN_LABEL_PREFIX):
            try:
                return BoardColumn(label[len(COLUMN_LABEL_PREFIX):])
            except ValueError:
                continue
    return BoardColumn.DRAFT


class GitHubBoardProvider:
    """
    Board provider for one repository.

    Args:
        github: Authenticated PyGithub client
        repo_full_name: Repository in "owner/repo" format
        max_retries: Retries on transient (5xx) errors
        retry_delay: Base delay between retries in seconds
    """

    def __init__(
        self,
        github: Github,
        repo_full_name: str,
        max_retries: int = 2,
        retry_delay: float = 1.0,
    ):
        self._github = github
        self.repo_full_name = repo_full_name
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._repo: Optional[GithubRepository] = None

    def _get_repo(self) -> GithubRepository:
        if self._repo is None:
            self._repo = self._github.get_repo(self.repo_full_name)
        return self._repo

    def _ensure_column_label(self, column: BoardColumn) -> str:
        name = column_label(column)
        repo = self._get_repo()
        try:
            repo.get_label(name)
        except GithubException as e:
            if e.status != 404:
                raise
            repo.create_label(name=name, color=COLUMN_LABEL_COLOR)
            logger.info("Created board label %s on %s", name, self.repo_full_name)
        return name

    def _with_retry(self, operation: Callable[[], Any], operation_name: str) -> Any:
        """
        Run ``operation``, retrying server errors with exponential backoff.

        Client errors (401/403/404/422) are raised immediately.
        """
        for attempt in range(self._max_retries + 1):
            try:
                return operation()
            except GithubException as e:
                if e.status in (401, 403, 404, 422) or attempt >= self._max_retries:
                    logger.error("%s: GitHub API error %s: %s", operation_name, e.status, e)
                    raise
                delay = self._retry_delay * (2 ** attempt)
                logger.warning(
                    "%s: GitHub API error (attempt %d/%d, status=%s). Retrying in %.1fs.",
                    operation_name,
                    attempt + 1,
                    self._max_retries + 1,
                    e.status,
                    delay,
                )
                time.sleep(delay)

    # ========================
    # Board Operations
    # ========================

    def _create_issue_sync(self, title: str, body: str, column: BoardColumn) -> BoardIssue:
        label = self._ensure_column_label(column)
        issue = self._get_repo().create_issue(title=title, body=body, labels=[label])
        logger.info("Created board issue #%d in %s (%s)", issue.number, self.repo_full_name, column.value)
        return BoardIssue(
            number=issue.number,
            title=issue.title,
            url=issue.html_url,
            column=column,
            body=body,
        )

    def _move_issue_sync(self, number: int, column: BoardColumn) -> None:
        target = self._ensure_column_label(column)
        issue = self._get_repo().get_issue(number)
        for label in issue.labels:
            if label.name.startswith(COLUMN_LABEL_PREFIX) and label.name != target:
                issue.remove_from_labels(label.name)
        issue.add_to_labels(target)
        logger.info("Moved board issue #%d in %s to %s", number, self.repo_full_name, column.value)

    async def create_issue(
        self, title: str, body: str, column: Optional[BoardColumn] = None
    ) -> BoardIssue:
        target = column or BoardColumn.DRAFT
        return await asyncio.to_thread(
            self._with_retry,
            lambda: self._create_issue_sync(title, body, target),
            f"create_issue({self.repo_full_name})",
        )

    async def move_issue(self, number: int, column: BoardColumn) -> None:
        await asyncio.to_thread(
            self._with_retry,
            lambda: self._move_issue_sync(number, column),
            f"move_issue({self.repo_full_name}#{number})",
        )


class GitHubBoardProviderFactory:
    """
    Resolves the board for a project path.

    Only the project's own board configuration is consulted; a project
    without one gets None, never a different project's board.
    """

    def __init__(self, token: Optional[str], projects: Sequence[ProjectConfig]):
        self._github = Github(auth=Auth.Token(token)) if token else None
        self._projects = list(projects)
        self._providers: dict[str, GitHubBoardProvider] = {}

    def _find_project(self, project_path: str) -> Optional[ProjectConfig]:
        normalized = project_path.rstrip("/")
        return next(
            (p for p in self._projects if p.path.rstrip("/") == normalized),
            None,
        )

    def for_project(self, project_path: str) -> Optional[GitHubBoardProvider]:
        if self._github is None:
            return None
        project = self._find_project(project_path)
        if project is None or not project.has_board:
            return None

        repo = project.board.repo
        if repo not in self._providers:
            self._providers[repo] = GitHubBoardProvider(self._github, repo)
        return self._providers[repo]

    def close(self) -> None:
        if self._github is not None:
            self._github.close()
