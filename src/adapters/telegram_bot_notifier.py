"""Telegram Bot API forwarding sink.

Uses the Bot API for delivery so forwarded messages land in the destination
chat through a bot, independent of which account saw them.
"""

from __future__ import annotations

import asyncio
import json
import urllib.error
import urllib.request

from core.models import SendResult

PARSE_MODES = {"html": "HTML", "markdown": "Markdown"}


class TelegramBotSink:
    """Forwarding sink that posts messages via the Telegram Bot API."""

    def __init__(self, bot_token: str, parse_mode: str = "html", timeout: float = 10.0) -> None:
        if parse_mode not in PARSE_MODES:
            raise ValueError(f"Unsupported parse mode: {parse_mode}")
        self._bot_token = bot_token
        self._parse_mode = PARSE_MODES[parse_mode]
        self._timeout = timeout

    def _endpoint(self) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"https://api.telegram.org/bot{self._bot_token}/sendMessage"

    def _post(self, chat_id: int, text: str) -> SendResult:
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": self._parse_mode,
            "disable_web_page_preview": True,
        }
        data = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(self._endpoint(), data=data, method="POST")
        request.add_header("Content-Type", "application/json")
        try:
            with urllib.request.urlopen(request, timeout=self._timeout):
                pass
        except urllib.error.HTTPError as e:
            body = e.read().decode("utf-8", errors="replace")
            return SendResult(ok=False, detail=f"Bot API error {e.code}: {body}")
        except (urllib.error.URLError, OSError) as e:
            return SendResult(ok=False, detail=f"Bot API unreachable: {e}")
        return SendResult(ok=True)

    async def send(self, chat_id: int, text: str) -> SendResult:
        """Send the rendered payload without blocking the event loop."""

        return await asyncio.to_thread(self._post, chat_id, text)
