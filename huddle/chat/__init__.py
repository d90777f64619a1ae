"""
Chat-side primitives: inbound message parsing and per-thread state.
"""

from huddle.chat.message_parser import JOB_STOPWORDS, MessageParser
from huddle.chat.thread_state import (
    AD_HOC_THREAD_MEMORY_MS,
    ISSUE_REVIEW_COOLDOWN_MS,
    MAX_PROCESSED_MESSAGE_KEYS,
    PERSONA_REPLY_COOLDOWN_MS,
    BoundedKeySet,
    ThreadStateManager,
)

__all__ = [
    "JOB_STOPWORDS",
    "MessageParser",
    "AD_HOC_THREAD_MEMORY_MS",
    "ISSUE_REVIEW_COOLDOWN_MS",
    "MAX_PROCESSED_MESSAGE_KEYS",
    "PERSONA_REPLY_COOLDOWN_MS",
    "BoundedKeySet",
    "ThreadStateManager",
]
