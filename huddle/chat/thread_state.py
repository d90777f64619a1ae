"""
Short-lived, per-thread and per-channel conversational state.

Everything here lives in memory and is lost on restart. The maps are guarded
by a lock so the manager can be shared by a multi-threaded host as well as a
single event loop.
"""

import random
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from huddle.models.persona import Persona

MAX_PROCESSED_MESSAGE_KEYS = 2000
PERSONA_REPLY_COOLDOWN_MS = 45_000
AD_HOC_THREAD_MEMORY_MS = 60 * 60_000
ISSUE_REVIEW_COOLDOWN_MS = 30 * 60_000


def _wall_clock_ms() -> float:
    return time.time() * 1000


class BoundedKeySet:
    """
    Insertion-ordered set with a fixed capacity and FIFO eviction.
    """

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError(f"capacity must be at least 1, got {capacity}")
        self.capacity = capacity
        self._keys: OrderedDict[str, None] = OrderedDict()

    def add(self, key: str) -> bool:
        """Add ``key``; False if it was already present."""
        if key in self._keys:
            return False
        self._keys[key] = None
        while len(self._keys) > self.capacity:
            self._keys.popitem(last=False)
        return True

    def __contains__(self, key: object) -> bool:
        return key in self._keys

    def __len__(self) -> int:
        return len(self._keys)


@dataclass
class AdHocThreadMemory:
    persona_id: str
    expires_at: float


class ThreadStateManager:
    """
    Owns deduplication, cooldowns, channel activity and ad-hoc thread memory.

    Args:
        clock: Returns the current time in milliseconds.
        rng: Random source used for persona picks.
    """

    def __init__(
        self,
        clock: Optional[Callable[[], float]] = None,
        rng: Optional[random.Random] = None,
        max_processed_message_keys: int = MAX_PROCESSED_MESSAGE_KEYS,
    ):
        self._clock = clock or _wall_clock_ms
        self._rng = rng or random.Random()
        self._lock = threading.RLock()

        self._processed_message_keys = BoundedKeySet(max_processed_message_keys)
        self._last_persona_reply_at: dict[str, float] = {}
        self._ad_hoc_threads: dict[str, AdHocThreadMemory] = {}
        self._last_channel_activity_at: dict[str, float] = {}
        self._reviewed_issues: dict[str, float] = {}

    # ======================
    # Message dedup
    # ======================

    def remember_message_key(self, key: str) -> bool:
        """True the first time ``key`` is seen, False on repeats."""
        with self._lock:
            return self._processed_message_keys.add(key)

    # ======================
    # Persona cooldown
    # ======================

    def is_persona_on_cooldown(self, channel: str, thread_ts: str, persona_id: str) -> bool:
        key = self._thread_key(channel, thread_ts, persona_id)
        with self._lock:
            last = self._last_persona_reply_at.get(key)
            if last is None:
                return False
            if self._clock() - last < PERSONA_REPLY_COOLDOWN_MS:
                return True
            del self._last_persona_reply_at[key]
            return False

    def mark_persona_reply(self, channel: str, thread_ts: str, persona_id: str) -> None:
        with self._lock:
            self._last_persona_reply_at[self._thread_key(channel, thread_ts, persona_id)] = (
                self._clock()
            )

    # ======================
    # Channel activity
    # ======================

    def mark_channel_activity(self, channel: str) -> None:
        with self._lock:
            self._last_channel_activity_at[channel] = self._clock()

    def get_last_channel_activity_at(self) -> dict[str, float]:
        """
        The live channel -> last activity (ms) map.

        This is the backing dict itself, not a copy: idle-nudge components
        read it and may update it directly.
        """
        return self._last_channel_activity_at

    # ======================
    # Ad-hoc thread memory
    # ======================

    def remember_ad_hoc_thread_persona(self, channel: str, thread_ts: str, persona_id: str) -> None:
        """Bind the thread to ``persona_id``; rebinding restarts the window."""
        with self._lock:
            self._ad_hoc_threads[self._ad_hoc_key(channel, thread_ts)] = AdHocThreadMemory(
                persona_id=persona_id,
                expires_at=self._clock() + AD_HOC_THREAD_MEMORY_MS,
            )

    def get_remembered_ad_hoc_persona(
        self, channel: str, thread_ts: str, personas: Sequence[Persona]
    ) -> Optional[Persona]:
        key = self._ad_hoc_key(channel, thread_ts)
        with self._lock:
            remembered = self._ad_hoc_threads.get(key)
            if remembered is None:
                return None
            if self._clock() > remembered.expires_at:
                del self._ad_hoc_threads[key]
                return None
            persona_id = remembered.persona_id
        return next((p for p in personas if p.id == persona_id), None)

    # ======================
    # Issue review cooldown
    # ======================

    def is_issue_on_review_cooldown(self, issue_url: str) -> bool:
        """URLs are compared verbatim; a trailing slash makes a different key."""
        with self._lock:
            last = self._reviewed_issues.get(issue_url)
            if last is None:
                return False
            if self._clock() - last < ISSUE_REVIEW_COOLDOWN_MS:
                return True
            del self._reviewed_issues[issue_url]
            return False

    def mark_issue_reviewed(self, issue_url: str) -> None:
        with self._lock:
            self._reviewed_issues[issue_url] = self._clock()

    # ======================
    # Persona selection
    # ======================

    def pick_random_persona(
        self, personas: Sequence[Persona], channel: str, thread_ts: str
    ) -> Optional[Persona]:
        """
        Uniform pick among personas not cooling down in this thread.

        When everyone is cooling down the whole roster is eligible again, so
        a non-empty roster always yields a persona.
        """
        if not personas:
            return None
        available = [
            p for p in personas if not self.is_persona_on_cooldown(channel, thread_ts, p.id)
        ]
        pool = available or list(personas)
        return self._rng.choice(pool)

    def pick_available_personas(
        self, personas: Sequence[Persona], channel: str, thread_ts: str, count: int
    ) -> list[Persona]:
        """Up to ``count`` distinct non-cooling personas in random order."""
        available = [
            p for p in personas if not self.is_persona_on_cooldown(channel, thread_ts, p.id)
        ]
        self._rng.shuffle(available)
        return available[:count]

    def find_persona_by_name(self, personas: Sequence[Persona], name: str) -> Optional[Persona]:
        target = name.lower()
        return next((p for p in personas if p.name.lower() == target), None)

    def random_int(self, low: int, high: int) -> int:
        """Inclusive random integer from the manager's random source."""
        return self._rng.randint(low, high)

    def random_chance(self, probability: float) -> bool:
        """True with the given probability."""
        if probability <= 0:
            return False
        if probability >= 1:
            return True
        return self._rng.random() < probability

    def now(self) -> float:
        """Current time (ms) on the manager's clock."""
        return self._clock()

    @staticmethod
    def _thread_key(channel: str, thread_ts: str, persona_id: str) -> str:
        return f"{channel}:{thread_ts}:{persona_id}"

    @staticmethod
    def _ad_hoc_key(channel: str, thread_ts: str) -> str:
        return f"{channel}:{thread_ts}"
