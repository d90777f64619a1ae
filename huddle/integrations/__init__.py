"""
Adapters for the external collaborators: gh CLI, links, LLM, board, Slack.
"""

from huddle.integrations.board import GitHubBoardProvider, GitHubBoardProviderFactory
from huddle.integrations.context_fetcher import ContextFetcher
from huddle.integrations.gh_cli import GhCli, GhCliError, GhItemMetadata
from huddle.integrations.llm_provider import LiteLLMContributionGenerator
from huddle.integrations.slack_transport import ChatTransportError, SlackTransport

__all__ = [
    "GitHubBoardProvider",
    "GitHubBoardProviderFactory",
    "ContextFetcher",
    "GhCli",
    "GhCliError",
    "GhItemMetadata",
    "LiteLLMContributionGenerator",
    "ChatTransportError",
    "SlackTransport",
]
