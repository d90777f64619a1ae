"""
Async wrapper around the GitHub CLI (``gh``).

Every call runs ``gh`` as a subprocess with a timeout. Failures (missing
binary, non-zero exit, timeout, unparsable output) raise ``GhCliError``;
callers in the orchestration layer catch it and degrade to empty output.
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Optional

from huddle.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DIFF_EXCERPT_MAX_LINES = 160
ISSUE_JQ_FILTER = "{title: .title, state: .state, body: .body, labels: [.labels[].name]}"


class GhCliError(Exception):
    """Raised when a gh invocation fails."""

    pass


@dataclass
class GhItemMetadata:
    """Issue or PR fields fetched via ``gh api``."""

    title: str
    state: str
    body: str = ""
    labels: list[str] = field(default_factory=list)


class GhCli:
    """
    Thin async runner for ``gh`` commands.

    Args:
        binary: gh executable name or path
        timeout_seconds: Per-call timeout
    """

    def __init__(self, binary: str = "gh", timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS):
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    async def run(
        self,
        args: list[str],
        cwd: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> str:
        """
        Run ``gh <args>`` and return stdout.

        Raises:
            GhCliError: On missing binary, timeout or non-zero exit
        """
        timeout = timeout_seconds or self.timeout_seconds
        try:
            process = await asyncio.create_subprocess_exec(
                self.binary,
                *args,
                cwd=cwd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise GhCliError(f"gh not available: {e}") from e
        except OSError as e:
            raise GhCliError(f"Failed to start gh: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as e:
            process.kill()
            await process.wait()
            raise GhCliError(f"gh {args[0] if args else ''} timed out after {timeout}s") from e

        if process.returncode != 0:
            message = stderr.decode("utf-8", errors="replace").strip()
            raise GhCliError(f"gh exited with {process.returncode}: {message[:300]}")

        return stdout.decode("utf-8", errors="replace")

    async def get_item_metadata(
        self, owner: str, repo: str, number: str, is_pull: bool
    ) -> GhItemMetadata:
        """
        Fetch title/state/body/labels of an issue or PR.

        Raises:
            GhCliError: If the call fails or returns malformed JSON
        """
        kind = "pulls" if is_pull else "issues"
        raw = await self.run(
            ["api", f"/repos/{owner}/{repo}/{kind}/{number}", "--jq", ISSUE_JQ_FILTER]
        )
        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError as e:
            raise GhCliError(f"Malformed gh api output: {e}") from e
        if not isinstance(data, dict):
            raise GhCliError(f"Malformed gh api output: expected an object, got {type(data).__name__}")

        return GhItemMetadata(
            title=str(data.get("title") or ""),
            state=str(data.get("state") or ""),
            body=str(data.get("body") or ""),
            labels=[str(label) for label in data.get("labels") or []],
        )

    async def get_pr_diff_excerpt(
        self, pr_number: str, cwd: str, max_lines: int = DIFF_EXCERPT_MAX_LINES
    ) -> str:
        """
        First ``max_lines`` lines of ``gh pr diff``, run inside the project.

        Raises:
            GhCliError: If the diff cannot be fetched
        """
        diff = await self.run(["pr", "diff", pr_number, "--color=never"], cwd=cwd)
        return "\n".join(diff.splitlines()[:max_lines]).strip()

    async def close_issue(self, number: str, repo: str, cwd: Optional[str] = None) -> None:
        """
        Raises:
            GhCliError: If the issue cannot be closed
        """
        await self.run(["issue", "close", number, "-R", repo], cwd=cwd, timeout_seconds=15.0)
        logger.info("gh_issue_closed", repo=repo, issue_number=number)
