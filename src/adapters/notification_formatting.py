"""Forward payload formatting.

Keeping formatting here prevents drift between sinks and keeps forwarded
messages consistent regardless of delivery channel.
"""

from __future__ import annotations

import html
from typing import Sequence

from core.models import Message
from core.rules_engine import KeywordRule, RuleStyle

DIVIDER = "──────────────"


def clip(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[: max(limit - 1, 0)].rstrip() + "…"


def format_timestamp(message: Message) -> str:
    return message.date.astimezone().strftime("%Y-%m-%d %H:%M:%S")


def style_label_html(label: str, style: RuleStyle) -> str:
    """Wrap an escaped keyword label in the tags its style flags ask for."""

    text = html.escape(label)
    if style.monospace:
        text = f"<code>{text}</code>"
    if style.bold:
        text = f"<b>{text}</b>"
    if style.italic:
        text = f"<i>{text}</i>"
    if style.underline:
        text = f"<u>{text}</u>"
    if style.strikethrough:
        text = f"<s>{text}</s>"
    if style.spoiler:
        text = f"<tg-spoiler>{text}</tg-spoiler>"
    if style.quote:
        text = f"<blockquote>{text}</blockquote>"
    return text


def _format_markdown(message: Message, rules: Sequence[KeywordRule], max_content_chars: int) -> str:
    """Create the Markdown body (Bot API parse_mode="Markdown")."""

    def escape_md(value: str) -> str:
        for ch in "_*[`":
            value = value.replace(ch, f"\\{ch}")
        return value

    keywords = ", ".join(escape_md(rule.content) for rule in rules)
    lines = [
        "📢 *Monitored message*",
        "",
        f"👤 *Sender:* {escape_md(message.sender_name)}",
        f"🏢 *Source:* {escape_md(message.source_chat_name)}",
        f"🎯 *Keywords:* {keywords}",
        f"⏰ *Time:* {format_timestamp(message)}",
        DIVIDER,
        "",
        escape_md(clip(message.content, max_content_chars)),
    ]
    return "\n".join(lines)


def _format_html(message: Message, rules: Sequence[KeywordRule], max_content_chars: int) -> str:
    """Create the HTML body used by the Bot API sink."""

    keywords = ", ".join(style_label_html(rule.content, rule.style) for rule in rules)
    parts = [
        "📢 <b>Monitored message</b>",
        "",
        f"👤 <b>Sender:</b> {html.escape(message.sender_name)}",
        f"🏢 <b>Source:</b> {html.escape(message.source_chat_name)}",
        f"🎯 <b>Keywords:</b> {keywords}",
        f"⏰ <b>Time:</b> {html.escape(format_timestamp(message))}",
        DIVIDER,
        "",
        html.escape(clip(message.content, max_content_chars)),
    ]
    return "\n".join(parts)


def format_forward(
    message: Message,
    rules: Sequence[KeywordRule],
    mode: str = "html",
    max_content_chars: int = 3500,
) -> str:
    """Return the forward payload formatted for the requested mode."""

    if mode == "markdown":
        return _format_markdown(message, rules, max_content_chars)
    if mode == "html":
        return _format_html(message, rules, max_content_chars)
    raise ValueError(f"Unsupported notification format: {mode}")
