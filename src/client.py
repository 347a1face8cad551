"""Telegram client factory for switchboard.

Every account gets its own TelegramClient and session file so sessions can
be torn down and rebuilt independently. Updates are handled sequentially
per client, which keeps each account's message order intact.
"""

from __future__ import annotations

import logging
import os
import re

from telethon import TelegramClient

from adapters.telethon_client import TelethonChatClient
from core.models import AccountConfig


def session_path(sessions_dir: str, account: AccountConfig) -> str:
    """Return the session file path (Telethon appends ``.session``)."""

    digits = re.sub(r"\D", "", account.phone_number)
    return os.path.join(sessions_dir, f"account_{account.id}_{digits}")


def build_client(account: AccountConfig, sessions_dir: str) -> TelethonChatClient:
    """Create a Telethon-backed chat client for one account."""

    os.makedirs(sessions_dir, exist_ok=True)
    path = session_path(sessions_dir, account)
    logging.getLogger(__name__).info("Initializing Telegram client for %s (%s)", account.name, path)

    client = TelegramClient(
        path,
        account.api_id,
        account.api_hash,
        sequential_updates=True,
    )
    return TelethonChatClient(client)


def client_factory(sessions_dir: str):
    """Bind the sessions directory and return a core-compatible factory."""

    def factory(account: AccountConfig) -> TelethonChatClient:
        return build_client(account, sessions_dir)

    return factory
