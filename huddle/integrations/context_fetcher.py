"""
External context for persona prompts.

Summarizes generic links (page title and meta description) and pulls
GitHub issue/PR bodies through the gh CLI. Every failure is skipped and
logged; callers always get a string, possibly empty.
"""

import asyncio
import re
from typing import Optional

import httpx

from huddle.integrations.gh_cli import GhCli, GhCliError
from huddle.utils.logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; huddle/1.0)"
MAX_URL_SUMMARIES = 4
MAX_GITHUB_ITEMS = 5
URL_FETCH_TIMEOUT_SECONDS = 5.0
GITHUB_BODY_MAX_CHARS = 1200

_TITLE_RE = re.compile(r"<title[^>]*>([^<]{1,200})</title>", re.IGNORECASE)
_META_DESCRIPTION_RES = [
    re.compile(
        r"<meta[^>]*name=[\"']description[\"'][^>]*content=[\"']([^\"']{1,300})[\"']",
        re.IGNORECASE,
    ),
    re.compile(
        r"<meta[^>]*content=[\"']([^\"']{1,300})[\"'][^>]*name=[\"']description[\"']",
        re.IGNORECASE,
    ),
]
_GITHUB_ITEM_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/(issues|pull)/(\d+)")


def summarize_html(url: str, html: str) -> Optional[str]:
    """``Link:/Title:/Summary:`` block for a page, or None if it has neither."""
    title_match = _TITLE_RE.search(html)
    title = title_match.group(1).strip() if title_match else ""

    description = ""
    for pattern in _META_DESCRIPTION_RES:
        match = pattern.search(html)
        if match:
            description = match.group(1).strip()
            break

    if not title and not description:
        return None

    lines = [f"Link: {url}"]
    if title:
        lines.append(f"Title: {title}")
    if description:
        lines.append(f"Summary: {description}")
    return "\n".join(lines)


class ContextFetcher:
    """
    Stateless context enrichment.

    Args:
        gh: gh CLI runner used for GitHub items
        transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        url_timeout_seconds: Overall deadline for all link fetches
    """

    def __init__(
        self,
        gh: Optional[GhCli] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        url_timeout_seconds: float = URL_FETCH_TIMEOUT_SECONDS,
        max_urls: int = MAX_URL_SUMMARIES,
        max_github_items: int = MAX_GITHUB_ITEMS,
    ):
        self.gh = gh or GhCli()
        self._transport = transport
        self.url_timeout_seconds = url_timeout_seconds
        self.max_urls = max_urls
        self.max_github_items = max_github_items

    async def fetch_url_summaries(self, urls: list[str]) -> str:
        """
        Title/description summaries for up to ``max_urls`` links.

        One shared deadline covers every fetch; whatever finished before it
        is returned, joined by blank lines.
        """
        if not urls:
            return ""

        parts: list[str] = []
        async with httpx.AsyncClient(
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
            timeout=self.url_timeout_seconds,
        ) as client:
            try:
                async with asyncio.timeout(self.url_timeout_seconds):
                    for url in urls[: self.max_urls]:
                        summary = await self._summarize_url(client, url)
                        if summary:
                            parts.append(summary)
            except TimeoutError:
                logger.warning("url_summary_deadline_exceeded", fetched=len(parts))

        return "\n\n".join(parts)

    async def _summarize_url(self, client: httpx.AsyncClient, url: str) -> Optional[str]:
        try:
            response = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning("url_fetch_failed", url=url, error=str(e))
            return None

        if not response.is_success:
            logger.debug("url_fetch_non_ok", url=url, status=response.status_code)
            return None
        return summarize_html(url, response.text)

    async def fetch_github_issue_context(self, urls: list[str]) -> str:
        """
        Header plus truncated body for up to ``max_github_items`` issue/PR links.
        """
        if not urls:
            return ""

        parts: list[str] = []
        for url in urls[: self.max_github_items]:
            match = _GITHUB_ITEM_RE.search(url)
            if not match:
                continue
            owner, repo, kind, number = match.groups()
            is_pull = kind == "pull"

            try:
                item = await self.gh.get_item_metadata(owner, repo, number, is_pull=is_pull)
            except GhCliError as e:
                logger.warning("github_context_fetch_failed", url=url, error=str(e))
                continue

            label_text = f" [{', '.join(item.labels)}]" if item.labels else ""
            body = item.body.strip()[:GITHUB_BODY_MAX_CHARS]
            parts.append(
                f"GitHub {'PR' if is_pull else 'Issue'} #{number}{label_text}: "
                f"{item.title} ({item.state})\n{body}"
            )

        return "\n\n---\n\n".join(parts)
