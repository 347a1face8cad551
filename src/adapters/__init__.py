"""Integration adapters for switchboard.

Telethon, the Telegram Bot API and SQLite live here; each adapter implements
one of the ports declared in ``core.ports``.
"""
