"""
huddle: multi-agent deliberation orchestrator.

Turns engineering signals (PRs, build failures, roadmap kickoffs, code-watch
findings, issues) into threaded chat discussions between simulated teammates.
"""

__version__ = "0.1.0"
