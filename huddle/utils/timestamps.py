"""
UTC timestamps.

Stored timestamps are naive UTC (the ``DateTime`` columns carry no zone), so
every comparison against them must use the same representation.
"""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
