"""Administrative facade over the monitoring supervisor.

Every operation returns an ``AdminResult`` so that callers (the CLI today)
never have to deal with exceptions or stack traces: engine errors are
turned into a short failure message and logged here.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from core.errors import MonitorError
from core.models import AccountConfig, LoginResult, MonitorStartResult
from core.ports import StoragePort
from core.rules_engine import KeywordAction, MatchMode, parse_mode
from core.supervisor import MonitoringSupervisor

LOGGER = logging.getLogger(__name__)

LOGIN_MESSAGES = {
    LoginResult.LOGGED_IN: "Login successful",
    LoginResult.WAITING_FOR_CODE: "Verification code sent, submit it to continue",
    LoginResult.WAITING_FOR_PASSWORD: "Two-step verification password required",
    LoginResult.FAILED: "Login failed",
}

START_MESSAGES = {
    MonitorStartResult.STARTED: "Monitoring started",
    MonitorStartResult.ALREADY_RUNNING: "Monitoring is already running",
    MonitorStartResult.MISSING_TARGET: "Set a target chat before starting",
    MonitorStartResult.NO_ACCOUNTS: "No enabled accounts to monitor",
    MonitorStartResult.ERROR: "No account could start monitoring",
}


@dataclass(frozen=True)
class AdminResult:
    succeeded: bool
    message: str = ""
    data: Any = None


def _ok(message: str = "", data: Any = None) -> AdminResult:
    return AdminResult(True, message, data)


def _fail(message: str) -> AdminResult:
    return AdminResult(False, message)


class AdminService:
    """Operations exposed to the administrative surface."""

    def __init__(self, supervisor: MonitoringSupervisor, storage: StoragePort) -> None:
        self._supervisor = supervisor
        self._storage = storage

    # -- accounts --------------------------------------------------------

    def list_accounts(self) -> AdminResult:
        return _ok(data=self._supervisor.list_account_statuses())

    def add_account(
        self,
        name: str,
        api_id: int,
        api_hash: str,
        phone_number: str,
        is_enabled: bool = True,
    ) -> AdminResult:
        account = AccountConfig(
            id=0,
            name=name,
            api_id=api_id,
            api_hash=api_hash,
            phone_number=phone_number,
            is_enabled=is_enabled,
        )
        try:
            added = self._supervisor.add_account(account)
        except MonitorError as exc:
            return _fail(str(exc))
        if not added:
            return _fail("Account could not be saved")
        return _ok(f"Account {name} added", data=account.id)

    async def remove_account(self, account_id: int) -> AdminResult:
        if await self._supervisor.remove_account(account_id):
            return _ok(f"Account {account_id} removed")
        return _fail(f"Account {account_id} does not exist")

    async def set_account_enabled(self, account_id: int, enabled: bool) -> AdminResult:
        if await self._supervisor.set_account_enabled(account_id, enabled):
            return _ok(f"Account {account_id} {'enabled' if enabled else 'disabled'}")
        return _fail(f"Account {account_id} does not exist")

    async def login(self, account_id: int, credential: str = "") -> AdminResult:
        try:
            result = await self._supervisor.login(account_id, credential)
        except MonitorError as exc:
            return _fail(str(exc))
        return AdminResult(result is not LoginResult.FAILED, LOGIN_MESSAGES[result], result)

    async def list_dialogs(self, account_id: int) -> AdminResult:
        try:
            dialogs = await self._supervisor.list_dialogs(account_id)
        except MonitorError as exc:
            return _fail(str(exc))
        except Exception:
            LOGGER.exception("Listing dialogs of account %s failed", account_id)
            return _fail("Could not fetch dialogs")
        return _ok(data=dialogs)

    # -- destination and monitoring --------------------------------------

    def set_target(self, chat_id: int) -> AdminResult:
        try:
            self._supervisor.set_target(chat_id)
        except Exception:
            LOGGER.exception("Saving target chat %s failed", chat_id)
            return _fail("Target chat could not be saved")
        return _ok(f"Target chat set to {chat_id}")

    async def start_monitoring(self) -> AdminResult:
        """Start monitoring in this process and record the request."""

        self._supervisor.request_monitoring(True)
        result = await self._supervisor.start_all()
        succeeded = result in (MonitorStartResult.STARTED, MonitorStartResult.ALREADY_RUNNING)
        return AdminResult(succeeded, START_MESSAGES[result], result)

    async def stop_monitoring(self) -> AdminResult:
        """Stop monitoring in this process and record the request."""

        self._supervisor.request_monitoring(False)
        await self._supervisor.stop_all()
        return _ok("Monitoring stopped")

    def request_monitoring(self, enabled: bool) -> AdminResult:
        """Ask the running monitor (possibly another process) to start or stop."""

        try:
            self._supervisor.request_monitoring(enabled)
        except Exception:
            LOGGER.exception("Saving the monitoring request failed")
            return _fail("Monitoring request could not be saved")
        return _ok(f"Monitoring {'start' if enabled else 'stop'} requested")

    def status(self) -> AdminResult:
        return _ok(
            data={
                "monitoring": self._supervisor.monitoring_reported(),
                "target_chat_id": self._supervisor.target_chat_id(),
                "accounts": self._supervisor.list_account_statuses(),
            }
        )

    # -- keywords --------------------------------------------------------

    def list_keywords(self) -> AdminResult:
        return _ok(data=self._storage.list_keywords())

    def add_keyword(
        self,
        content: str,
        match_mode: str = MatchMode.SUBSTRING.value,
        action: str = KeywordAction.MONITOR.value,
        case_sensitive: bool = False,
        **style: bool,
    ) -> AdminResult:
        content = content.strip()
        if not content:
            return _fail("Keyword content is required")
        try:
            mode = parse_mode(match_mode)
            kind = KeywordAction(action)
        except ValueError as exc:
            return _fail(str(exc))
        if mode is MatchMode.PATTERN:
            try:
                re.compile(content)
            except re.error as exc:
                return _fail(f"Invalid pattern: {exc}")

        keyword_id = self._storage.add_keyword(
            {
                "content": content,
                "match_mode": mode.value,
                "action": kind.value,
                "case_sensitive": case_sensitive,
                **style,
            }
        )
        self._supervisor.reload_rules()
        return _ok(f"Keyword {content!r} added", data=keyword_id)

    def remove_keyword(self, keyword_id: int) -> AdminResult:
        if self._storage.delete_keyword(keyword_id):
            self._supervisor.reload_rules()
            return _ok(f"Keyword {keyword_id} removed")
        return _fail(f"Keyword {keyword_id} does not exist")


def describe(result: AdminResult, default: Optional[str] = None) -> str:
    """Human-readable one-liner for CLI output."""

    status = "OK" if result.succeeded else "FAILED"
    return f"[{status}] {result.message or default or ''}".rstrip()
