"""Deduplication helpers (core domain)."""

from __future__ import annotations

import hashlib
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from core.models import Message


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def compute_fingerprint(message: Message) -> str:
    """Return a fingerprint over sender, source, content and whole seconds.

    Two accounts watching the same chat receive the same message with the same
    sender, chat and timestamp, so they collapse to one fingerprint.
    """

    stamp = message.date.strftime("%Y%m%d%H%M%S")
    payload = f"{message.sender_id}_{message.source_chat_id}_{message.content}_{stamp}"
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


class DedupCache:
    """Process-wide fingerprint -> first-seen map with a retention window."""

    def __init__(
        self,
        retention: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._retention = retention
        self._clock = clock
        self._entries: Dict[str, datetime] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, fingerprint: str) -> bool:
        return fingerprint in self._entries

    def observe(self, fingerprint: str) -> bool:
        """Check-and-insert; return True only the first time a fingerprint is seen."""

        with self._lock:
            if fingerprint in self._entries:
                return False
            self._entries[fingerprint] = self._clock()
            return True

    def purge(self, now: Optional[datetime] = None) -> int:
        """Drop entries older than the retention window and return how many."""

        cutoff = (now or self._clock()) - self._retention
        with self._lock:
            stale = [key for key, seen in self._entries.items() if seen < cutoff]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
