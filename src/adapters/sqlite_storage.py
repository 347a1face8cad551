"""SQLite storage adapter.

Implements the account, system config and keyword store ports using a
simple SQLite database.
"""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from core.models import AccountConfig
from core.rules_engine import KeywordRule, build_rules

KEYWORD_FLAGS = (
    "case_sensitive",
    "bold",
    "italic",
    "underline",
    "strikethrough",
    "quote",
    "monospace",
    "spoiler",
)


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _format_dt(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the core store ports."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - accounts: monitored accounts and their login bookkeeping
        - system_config: generic key/value settings (target chat id)
        - keywords: keyword rules consumed by the matching engine
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT NOT NULL,
                    api_id INTEGER NOT NULL,
                    api_hash TEXT NOT NULL,
                    phone_number TEXT NOT NULL,
                    is_enabled INTEGER NOT NULL DEFAULT 1,
                    created_at TIMESTAMP NOT NULL,
                    last_login_time TIMESTAMP,
                    is_logged_in INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS system_config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL
                )
                """
            )
            # Style flags are cosmetic; only is_case_sensitive affects matching.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS keywords (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    content TEXT NOT NULL,
                    match_mode TEXT NOT NULL,
                    action TEXT NOT NULL,
                    is_enabled INTEGER NOT NULL DEFAULT 1,
                    is_case_sensitive INTEGER NOT NULL DEFAULT 0,
                    is_bold INTEGER NOT NULL DEFAULT 0,
                    is_italic INTEGER NOT NULL DEFAULT 0,
                    is_underline INTEGER NOT NULL DEFAULT 0,
                    is_strikethrough INTEGER NOT NULL DEFAULT 0,
                    is_quote INTEGER NOT NULL DEFAULT 0,
                    is_monospace INTEGER NOT NULL DEFAULT 0,
                    is_spoiler INTEGER NOT NULL DEFAULT 0
                )
                """
            )

    # -- accounts --------------------------------------------------------

    @staticmethod
    def _row_to_account(row: sqlite3.Row) -> AccountConfig:
        return AccountConfig(
            id=int(row["id"]),
            name=row["name"],
            api_id=int(row["api_id"]),
            api_hash=row["api_hash"],
            phone_number=row["phone_number"],
            is_enabled=bool(row["is_enabled"]),
            created_at=_parse_dt(row["created_at"]),
            last_login_time=_parse_dt(row["last_login_time"]),
            is_logged_in=bool(row["is_logged_in"]),
        )

    def list_accounts(self) -> List[AccountConfig]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM accounts ORDER BY id").fetchall()
        return [self._row_to_account(row) for row in rows]

    def get_account(self, account_id: int) -> Optional[AccountConfig]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
        return self._row_to_account(row) if row else None

    def add_account(self, account: AccountConfig) -> AccountConfig:
        """Insert an account and return it with its assigned id."""

        created_at = account.created_at or datetime.now(timezone.utc)
        with self._connect() as conn:
            cur = conn.execute(
                """
                INSERT INTO accounts (
                    name, api_id, api_hash, phone_number, is_enabled,
                    created_at, last_login_time, is_logged_in
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    account.name,
                    account.api_id,
                    account.api_hash,
                    account.phone_number,
                    int(account.is_enabled),
                    created_at.isoformat(),
                    _format_dt(account.last_login_time),
                    int(account.is_logged_in),
                ),
            )
            account.id = int(cur.lastrowid)
        account.created_at = created_at
        return account

    def update_account(self, account: AccountConfig) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE accounts
                SET name = ?, api_id = ?, api_hash = ?, phone_number = ?,
                    is_enabled = ?, last_login_time = ?, is_logged_in = ?
                WHERE id = ?
                """,
                (
                    account.name,
                    account.api_id,
                    account.api_hash,
                    account.phone_number,
                    int(account.is_enabled),
                    _format_dt(account.last_login_time),
                    int(account.is_logged_in),
                    account.id,
                ),
            )

    def delete_account(self, account_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
            return cur.rowcount > 0

    # -- system config ---------------------------------------------------

    def get_config(self, key: str) -> Optional[str]:
        with self._connect() as conn:
            row = conn.execute("SELECT value FROM system_config WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_config(self, key: str, value: str, description: str = "") -> None:
        """Upsert a config value, keeping the original creation time."""

        now = datetime.now(timezone.utc).isoformat()
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO system_config (key, value, description, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    updated_at = excluded.updated_at
                """,
                (key, value, description, now, now),
            )

    # -- keywords --------------------------------------------------------

    @staticmethod
    def _row_to_keyword(row: sqlite3.Row) -> dict:
        keyword = {
            "id": int(row["id"]),
            "content": row["content"],
            "match_mode": row["match_mode"],
            "action": row["action"],
            "enabled": bool(row["is_enabled"]),
        }
        for flag in KEYWORD_FLAGS:
            keyword[flag] = bool(row[f"is_{flag}"])
        return keyword

    def list_keywords(self) -> List[dict]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM keywords ORDER BY id").fetchall()
        return [self._row_to_keyword(row) for row in rows]

    def add_keyword(self, keyword: dict) -> int:
        columns = ["content", "match_mode", "action", "is_enabled", *(f"is_{flag}" for flag in KEYWORD_FLAGS)]
        values = [
            keyword["content"],
            keyword.get("match_mode", "Substring"),
            keyword.get("action", "Monitor"),
            int(keyword.get("enabled", True)),
            *(int(bool(keyword.get(flag, False))) for flag in KEYWORD_FLAGS),
        ]
        placeholders = ", ".join("?" for _ in columns)
        with self._connect() as conn:
            cur = conn.execute(
                f"INSERT INTO keywords ({', '.join(columns)}) VALUES ({placeholders})",
                values,
            )
            return int(cur.lastrowid)

    def delete_keyword(self, keyword_id: int) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM keywords WHERE id = ?", (keyword_id,))
            return cur.rowcount > 0

    def list_active_rules(self) -> List[KeywordRule]:
        """Return enabled keywords compiled for the matching engine."""

        return build_rules(self.list_keywords())
