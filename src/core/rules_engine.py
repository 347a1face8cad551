"""Keyword rule compilation and matching logic (core domain).

Matching runs in stages, and every stage checks exclusions before it acts on
monitor hits:

1. sender id rules
2. sender name rules
3. any monitor hit from stages 1-2 forwards immediately, skipping content
4. content rules (exact word, substring, pattern, fuzzy)
5. remaining content monitor hits forward, otherwise drop
"""

from __future__ import annotations

from dataclasses import dataclass
from difflib import SequenceMatcher
from enum import Enum
import logging
import re
from typing import Iterable, List, Optional, Sequence, Tuple

from core.models import Message

LOGGER = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)


class MatchMode(Enum):
    EXACT_WORD = "ExactWord"
    SUBSTRING = "Substring"
    PATTERN = "Pattern"
    FUZZY = "Fuzzy"
    SENDER_ID = "SenderId"
    SENDER_NAME = "SenderName"


# Older keyword exports used these labels.
_MODE_ALIASES = {
    "FullWord": MatchMode.EXACT_WORD,
    "Contains": MatchMode.SUBSTRING,
    "Regex": MatchMode.PATTERN,
    "User": MatchMode.SENDER_ID,
    "UserName": MatchMode.SENDER_NAME,
}

CONTENT_MODES = frozenset(
    {MatchMode.EXACT_WORD, MatchMode.SUBSTRING, MatchMode.PATTERN, MatchMode.FUZZY}
)


class KeywordAction(Enum):
    MONITOR = "Monitor"
    EXCLUDE = "Exclude"


class Decision(Enum):
    FORWARD = "forward"
    DROP = "drop"


@dataclass(frozen=True)
class RuleStyle:
    """Cosmetic flags applied to the keyword label in forwarded payloads."""

    bold: bool = False
    italic: bool = False
    underline: bool = False
    strikethrough: bool = False
    quote: bool = False
    monospace: bool = False
    spoiler: bool = False


@dataclass(frozen=True)
class KeywordRule:
    """Compiled keyword rule used by the routing pipeline."""

    content: str
    mode: MatchMode
    action: KeywordAction
    id: Optional[int] = None
    case_sensitive: bool = False
    style: RuleStyle = RuleStyle()
    pattern: Optional[re.Pattern] = None

    @property
    def is_exclude(self) -> bool:
        return self.action is KeywordAction.EXCLUDE


@dataclass(frozen=True)
class MatchOutcome:
    """Routing decision plus the rules that justify it."""

    decision: Decision
    stage: str
    matched: Tuple[KeywordRule, ...] = ()

    @property
    def forward(self) -> bool:
        return self.decision is Decision.FORWARD

    @property
    def labels(self) -> List[str]:
        return [rule.content for rule in self.matched]

    @property
    def reason(self) -> str:
        if not self.matched:
            return f"{self.stage}: no match"
        verb = "forward" if self.forward else "drop"
        return f"{self.stage}: {verb} ({', '.join(self.labels)})"


def parse_mode(value: str) -> MatchMode:
    if value in _MODE_ALIASES:
        return _MODE_ALIASES[value]
    return MatchMode(value)


def _compile_pattern(content: str, mode: MatchMode, case_sensitive: bool) -> Optional[re.Pattern]:
    flags = 0 if case_sensitive else re.IGNORECASE
    if mode is MatchMode.PATTERN:
        return re.compile(content, flags)
    if mode is MatchMode.EXACT_WORD:
        # Lookarounds instead of \b so keywords that start or end with
        # punctuation still need a full-token boundary.
        return re.compile(rf"(?<!\w){re.escape(content)}(?!\w)", flags)
    return None


def build_rules(rules_config: Iterable[dict]) -> List[KeywordRule]:
    """Normalize keyword configs and compile their patterns.

    Disabled rules, empty rules and rules with an invalid regex are skipped
    so a single bad entry never blocks matching for every message.
    """

    compiled: List[KeywordRule] = []
    for raw in rules_config:
        if not raw.get("enabled", True):
            continue
        content = str(raw.get("content", "")).strip()
        if not content:
            continue
        try:
            mode = parse_mode(raw.get("match_mode", MatchMode.SUBSTRING.value))
            action = KeywordAction(raw.get("action", KeywordAction.MONITOR.value))
        except ValueError:
            LOGGER.warning("Skipping keyword %r with unknown mode or action", content)
            continue
        case_sensitive = bool(raw.get("case_sensitive", False))
        try:
            pattern = _compile_pattern(content, mode, case_sensitive)
        except re.error as exc:
            LOGGER.warning("Skipping keyword %r: invalid pattern (%s)", content, exc)
            continue
        style = RuleStyle(
            bold=bool(raw.get("bold", False)),
            italic=bool(raw.get("italic", False)),
            underline=bool(raw.get("underline", False)),
            strikethrough=bool(raw.get("strikethrough", False)),
            quote=bool(raw.get("quote", False)),
            monospace=bool(raw.get("monospace", False)),
            spoiler=bool(raw.get("spoiler", False)),
        )
        compiled.append(
            KeywordRule(
                content=content,
                mode=mode,
                action=action,
                id=raw.get("id"),
                case_sensitive=case_sensitive,
                style=style,
                pattern=pattern,
            )
        )
    return compiled


def fuzzy_contains(text: str, keyword: str, threshold: float) -> bool:
    """Return True if any token window of ``text`` is similar enough to ``keyword``."""

    words = [token.lower() for token in _TOKEN_RE.findall(text)]
    needle_tokens = [token.lower() for token in _TOKEN_RE.findall(keyword)]
    if not words or not needle_tokens:
        return False
    needle = " ".join(needle_tokens)
    width = len(needle_tokens)
    for start in range(0, max(len(words) - width, 0) + 1):
        window = " ".join(words[start : start + width])
        if SequenceMatcher(None, needle, window).ratio() >= threshold:
            return True
    return False


def match_sender_id(
    sender_id: int, sender_aliases: Sequence[str], rules: Iterable[KeywordRule]
) -> List[KeywordRule]:
    """Rules of mode SenderId that name this sender by id or by @alias."""

    sender = str(sender_id)
    aliases = {alias.lower().lstrip("@") for alias in sender_aliases if alias}
    hits: List[KeywordRule] = []
    for rule in rules:
        if rule.mode is not MatchMode.SENDER_ID:
            continue
        if rule.content.startswith("@"):
            if rule.content[1:].lower() in aliases:
                hits.append(rule)
        elif rule.content == sender:
            hits.append(rule)
    return hits


def match_sender_name(sender_name: str, rules: Iterable[KeywordRule]) -> List[KeywordRule]:
    lowered = sender_name.lower()
    return [
        rule
        for rule in rules
        if rule.mode is MatchMode.SENDER_NAME and rule.content.lower() in lowered
    ]


def match_content(text: str, rules: Iterable[KeywordRule], fuzzy_threshold: float) -> List[KeywordRule]:
    if not text:
        return []
    lowered = text.lower()
    hits: List[KeywordRule] = []
    for rule in rules:
        if rule.mode is MatchMode.SUBSTRING:
            matched = rule.content.lower() in lowered
        elif rule.mode in (MatchMode.EXACT_WORD, MatchMode.PATTERN):
            matched = rule.pattern is not None and rule.pattern.search(text) is not None
        elif rule.mode is MatchMode.FUZZY:
            matched = fuzzy_contains(text, rule.content, fuzzy_threshold)
        else:
            continue
        if matched:
            hits.append(rule)
    return hits


def _excluding(hits: Iterable[KeywordRule]) -> Tuple[KeywordRule, ...]:
    return tuple(rule for rule in hits if rule.is_exclude)


def _monitoring(hits: Iterable[KeywordRule]) -> Tuple[KeywordRule, ...]:
    return tuple(rule for rule in hits if not rule.is_exclude)


def match_rules(
    message: Message,
    rules: Iterable[KeywordRule],
    fuzzy_threshold: float = 0.8,
) -> MatchOutcome:
    """Run the staged evaluation for one message."""

    rules = list(rules)

    id_hits = match_sender_id(message.sender_id, message.sender_aliases, rules)
    excluded = _excluding(id_hits)
    if excluded:
        return MatchOutcome(Decision.DROP, "sender_id", excluded)

    name_hits = match_sender_name(message.sender_name, rules)
    excluded = _excluding(name_hits)
    if excluded:
        return MatchOutcome(Decision.DROP, "sender_name", excluded)

    sender_monitors = _monitoring(id_hits) + _monitoring(name_hits)
    if sender_monitors:
        return MatchOutcome(Decision.FORWARD, "sender", sender_monitors)

    content_hits = match_content(message.content, rules, fuzzy_threshold)
    excluded = _excluding(content_hits)
    if excluded:
        return MatchOutcome(Decision.DROP, "content", excluded)

    monitors = _monitoring(content_hits)
    if monitors:
        return MatchOutcome(Decision.FORWARD, "content", monitors)
    return MatchOutcome(Decision.DROP, "content")
