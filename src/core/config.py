"""Core configuration dataclasses.

We keep config parsing outside the core, but these dataclasses define the
shape the core expects so adapters and app layers can build safely.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class DedupConfig:
    """Deduplication settings for the routing pipeline."""

    retention_hours: int = 24
    sweep_interval_seconds: float = 3600.0


@dataclass(frozen=True)
class MatchingConfig:
    """Keyword engine settings."""

    fuzzy_threshold: float = 0.8


@dataclass(frozen=True)
class ControlConfig:
    """How often a running monitor picks up changes from the shared store."""

    sync_interval_seconds: float = 5.0


@dataclass(frozen=True)
class NotificationConfig:
    """Forward payload settings consumed by the formatter."""

    format: str = "html"
    max_content_chars: int = 3500


@dataclass
class RuntimeState:
    """Process-wide mutable state owned by the supervisor.

    ``target_chat_id`` is written by ``set_target`` or picked up from the
    store by ``sync`` and read for every message (last writer wins). ``monitoring`` is
    flipped by ``start_all``/``stop_all``, read by status queries and published
    to the store so that other processes can report it.
    """

    target_chat_id: Optional[int] = None
    monitoring: bool = False
