"""Monitoring supervisor: account table, lifecycle and routing pipeline.

Routing order for every message coming out of an account session:
1) Fingerprint + shared dedup cache (duplicates are dropped silently)
2) Destination check (nothing is forwarded before a target exists)
3) Keyword evaluation against the current rule snapshot
4) Render + hand off to the forwarding sink as an independent task

Failures at any step are logged and stay inside the message that caused
them; the originating session never sees them.

Administrative commands may run in another process against the same store.
A running monitor rereads the store on every sync tick and applies what
changed: the target chat, keyword rules, added/removed/disabled accounts,
logins done elsewhere and start/stop requests.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import re
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, Dict, List, Optional, Sequence

from core.config import ControlConfig, DedupConfig, MatchingConfig, RuntimeState
from core.dedup import DedupCache, compute_fingerprint
from core.errors import ConfigurationError, NotFoundError
from core.models import (
    AccountConfig,
    AccountStatus,
    DialogEntry,
    LoginResult,
    Message,
    MonitorStartResult,
    SessionState,
)
from core.ports import ForwardingSinkPort, StoragePort
from core.rules_engine import KeywordRule, match_rules
from core.session import AccountSession, ClientFactory, normalize_phone

LOGGER = logging.getLogger(__name__)

TARGET_CHAT_KEY = "TargetChatId"
# Written by administrative start/stop requests, applied by the running monitor.
MONITORING_REQUEST_KEY = "MonitoringRequested"
# Published by the process that runs the monitor.
MONITORING_ACTIVE_KEY = "MonitoringActive"
API_HASH_RE = re.compile(r"^[0-9a-fA-F]{32}$")

Renderer = Callable[[Message, Sequence[KeywordRule]], str]


def validate_account(account: AccountConfig) -> None:
    """Reject credential shapes that can never log in."""

    if not account.name.strip():
        raise ConfigurationError("Account name is required")
    if account.api_id <= 0:
        raise ConfigurationError("api_id must be a positive integer")
    if not API_HASH_RE.match(account.api_hash or ""):
        raise ConfigurationError("api_hash must be 32 hexadecimal characters")
    normalize_phone(account.phone_number)


def _flag_text(value: bool) -> str:
    return "true" if value else "false"


def _parse_flag(raw: Optional[str]) -> Optional[bool]:
    if raw is None:
        return None
    return raw.strip().lower() == "true"


@dataclass(frozen=True)
class StoreSnapshot:
    accounts: List[AccountConfig]
    target: Optional[str]
    rules: List[KeywordRule]
    monitoring_requested: Optional[bool]


class MonitoringSupervisor:
    """Owns every account session, the dedup cache and the destination."""

    def __init__(
        self,
        storage: StoragePort,
        sink: ForwardingSinkPort,
        client_factory: ClientFactory,
        render: Renderer,
        *,
        state: Optional[RuntimeState] = None,
        dedup_config: DedupConfig = DedupConfig(),
        matching_config: MatchingConfig = MatchingConfig(),
        control_config: ControlConfig = ControlConfig(),
        dedup_cache: Optional[DedupCache] = None,
    ) -> None:
        self._storage = storage
        self._sink = sink
        self._client_factory = client_factory
        self._render = render
        self._state = state or RuntimeState()
        self._dedup_config = dedup_config
        self._matching = matching_config
        self._control = control_config
        self._dedup = dedup_cache or DedupCache(retention=timedelta(hours=dedup_config.retention_hours))
        self._rules: List[KeywordRule] = []
        self._sessions: Dict[int, AccountSession] = {}
        self._deliveries: set[asyncio.Task] = set()
        self._sweeper: Optional[asyncio.Task] = None
        self._syncer: Optional[asyncio.Task] = None
        self._lifecycle_lock = asyncio.Lock()

    # -- state -----------------------------------------------------------

    @property
    def state(self) -> RuntimeState:
        return self._state

    @property
    def dedup(self) -> DedupCache:
        return self._dedup

    def is_monitoring(self) -> bool:
        return self._state.monitoring

    def monitoring_reported(self) -> bool:
        """Monitoring in this process or in the process that runs the monitor."""

        if self._state.monitoring:
            return True
        return _parse_flag(self._storage.get_config(MONITORING_ACTIVE_KEY)) is True

    def _set_monitoring(self, value: bool) -> None:
        if self._state.monitoring == value:
            return
        self._state.monitoring = value
        try:
            self._storage.set_config(MONITORING_ACTIVE_KEY, _flag_text(value), "Whether a monitor is running")
        except Exception:
            LOGGER.exception("Publishing the monitoring flag failed")

    def target_chat_id(self) -> Optional[int]:
        return self._state.target_chat_id

    def _new_session(self, account: AccountConfig) -> AccountSession:
        return AccountSession(account, self._client_factory, self.on_message)

    def get_session(self, account_id: int) -> AccountSession:
        session = self._sessions.get(account_id)
        if session is None:
            raise NotFoundError(f"Account {account_id} does not exist")
        return session

    def sessions(self) -> List[AccountSession]:
        return list(self._sessions.values())

    # -- startup ---------------------------------------------------------

    def load(self) -> None:
        """Create sessions for enabled accounts, load the target and the rules."""

        for account in self._storage.list_accounts():
            if not account.is_enabled or account.id in self._sessions:
                continue
            self._sessions[account.id] = self._new_session(account)
            LOGGER.info("Loaded account %s (id %s)", account.name, account.id)

        self._apply_target(self._storage.get_config(TARGET_CHAT_KEY))
        self.reload_rules()

    def _apply_target(self, raw_target: Optional[str]) -> None:
        if not raw_target:
            return
        try:
            target = int(raw_target)
        except ValueError:
            LOGGER.warning("Ignoring invalid stored target chat id %r", raw_target)
            return
        if target != self._state.target_chat_id:
            self._state.target_chat_id = target
            LOGGER.info("Target chat is %s", target)

    def reload_rules(self) -> None:
        """Replace the rule snapshot used for routing."""

        self._rules = self._storage.list_active_rules()
        LOGGER.debug("Loaded %s keyword rules", len(self._rules))

    async def resume_all(self) -> int:
        """Restore saved logins for every session; return how many are active."""

        results = await asyncio.gather(
            *(session.resume() for session in self._sessions.values()),
            return_exceptions=True,
        )
        restored = sum(1 for result in results if result is True)
        LOGGER.info("Restored %s/%s account sessions", restored, len(results))
        return restored

    def start_sweeper(self) -> None:
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._dedup_config.sweep_interval_seconds)
            removed = self._dedup.purge()
            LOGGER.debug("Dedup sweep removed %s fingerprints", removed)

    def start_sync(self) -> None:
        if self._syncer is not None and not self._syncer.done():
            return
        self._syncer = asyncio.create_task(self._sync_loop())

    async def _sync_loop(self) -> None:
        while True:
            await asyncio.sleep(self._control.sync_interval_seconds)
            try:
                await self.sync()
            except Exception:
                LOGGER.exception("Syncing with the store failed")

    def _read_store(self) -> StoreSnapshot:
        return StoreSnapshot(
            accounts=self._storage.list_accounts(),
            target=self._storage.get_config(TARGET_CHAT_KEY),
            rules=self._storage.list_active_rules(),
            monitoring_requested=_parse_flag(self._storage.get_config(MONITORING_REQUEST_KEY)),
        )

    async def sync(self) -> None:
        """Apply changes other processes wrote to the store."""

        # Store reads block, keep them off the loop every account shares.
        snapshot = await asyncio.to_thread(self._read_store)
        self._rules = snapshot.rules
        self._apply_target(snapshot.target)
        async with self._lifecycle_lock:
            await self._reconcile(snapshot.accounts)

        if snapshot.monitoring_requested is True and not self._state.monitoring:
            result = await self.start_all()
            LOGGER.info("Start requested from the store: %s", result.value)
        elif snapshot.monitoring_requested is False and self._state.monitoring:
            LOGGER.info("Stop requested from the store")
            await self.stop_all()

    async def _reconcile(self, accounts: Sequence[AccountConfig]) -> None:
        """Bring the session table in line with the stored accounts.

        Caller holds the lifecycle lock.
        """

        enabled = {account.id: account for account in accounts if account.is_enabled}
        for account_id in [key for key in self._sessions if key not in enabled]:
            session = self._sessions.pop(account_id)
            await session.close()
            LOGGER.info("Account %s was removed or disabled, session closed", account_id)

        for account_id, account in enabled.items():
            session = self._sessions.get(account_id)
            if session is None:
                session = self._sessions[account_id] = self._new_session(account)
                LOGGER.info("Picked up account %s (id %s)", account.name, account_id)
                restored = await session.resume()
            elif (
                session.state in (SessionState.CREATED, SessionState.DISCONNECTED)
                and account.is_logged_in
                and account.last_login_time != session.account.last_login_time
            ):
                # Logged in from another process: the session file changed.
                session.account = account
                restored = await session.reconnect()
            else:
                continue
            if restored and self._state.monitoring:
                await session.start_monitoring()

    # -- administrative operations ---------------------------------------

    def list_account_statuses(self) -> List[AccountStatus]:
        statuses = []
        for account in self._storage.list_accounts():
            session = self._sessions.get(account.id)
            statuses.append(
                AccountStatus(
                    account_id=account.id,
                    name=account.name,
                    phone_number=account.phone_number,
                    # The stored flag covers logins held by another process.
                    is_logged_in=(session is not None and session.is_logged_in) or account.is_logged_in,
                    is_enabled=account.is_enabled,
                    last_login_time=account.last_login_time,
                )
            )
        return statuses

    def add_account(self, account: AccountConfig) -> bool:
        validate_account(account)
        try:
            stored = self._storage.add_account(account)
        except Exception:
            LOGGER.exception("Saving account %s failed", account.name)
            return False
        if stored.is_enabled:
            self._sessions[stored.id] = self._new_session(stored)
        LOGGER.info("Account %s added (id %s)", stored.name, stored.id)
        return True

    async def remove_account(self, account_id: int) -> bool:
        try:
            deleted = self._storage.delete_account(account_id)
        except Exception:
            LOGGER.exception("Deleting account %s failed", account_id)
            return False
        session = self._sessions.pop(account_id, None)
        if session is not None:
            await session.close()
        if deleted or session is not None:
            LOGGER.info("Account %s removed", account_id)
            return True
        return False

    async def set_account_enabled(self, account_id: int, enabled: bool) -> bool:
        account = self._storage.get_account(account_id)
        if account is None:
            return False
        account.is_enabled = enabled
        self._storage.update_account(account)
        if enabled and account_id not in self._sessions:
            self._sessions[account_id] = self._new_session(account)
        elif not enabled:
            session = self._sessions.pop(account_id, None)
            if session is not None:
                await session.close()
        LOGGER.info("Account %s %s", account_id, "enabled" if enabled else "disabled")
        return True

    async def login(self, account_id: int, credential: str = "") -> LoginResult:
        session = self.get_session(account_id)
        result = await session.login(credential)
        self._storage.update_account(session.account)
        return result

    async def list_dialogs(self, account_id: int) -> List[DialogEntry]:
        """Dialogs of one account, connecting only that account if needed."""

        session = self.get_session(account_id)
        if session.state in (SessionState.CREATED, SessionState.DISCONNECTED):
            await session.resume()
        return await session.list_dialogs()

    def set_target(self, chat_id: int) -> None:
        self._storage.set_config(TARGET_CHAT_KEY, str(chat_id), "Destination chat id")
        self._state.target_chat_id = chat_id
        LOGGER.info("Target chat set to %s", chat_id)

    def request_monitoring(self, enabled: bool) -> None:
        """Record a start/stop request for whichever process runs the monitor."""

        self._storage.set_config(MONITORING_REQUEST_KEY, _flag_text(enabled), "Monitoring requested")
        LOGGER.info("Monitoring %s requested", "start" if enabled else "stop")

    # -- monitoring lifecycle --------------------------------------------

    async def start_all(self) -> MonitorStartResult:
        if self._state.target_chat_id is None:
            return MonitorStartResult.MISSING_TARGET

        async with self._lifecycle_lock:
            if self._state.monitoring:
                return MonitorStartResult.ALREADY_RUNNING

            enabled = [session for session in self._sessions.values() if session.account.is_enabled]
            if not enabled:
                return MonitorStartResult.NO_ACCOUNTS

            results = await asyncio.gather(
                *(session.start_monitoring() for session in enabled),
                return_exceptions=True,
            )
            running = 0
            for session, result in zip(enabled, results):
                if isinstance(result, BaseException):
                    LOGGER.error("Starting account %s failed", session.account.name, exc_info=result)
                elif result in (MonitorStartResult.STARTED, MonitorStartResult.ALREADY_RUNNING):
                    running += 1
                else:
                    LOGGER.warning("Account %s did not start (%s)", session.account.name, result.value)

            if not running:
                return MonitorStartResult.ERROR
            self._set_monitoring(True)
            LOGGER.info("Monitoring started on %s/%s accounts", running, len(enabled))
            return MonitorStartResult.STARTED

    async def stop_all(self) -> None:
        # Cleared before the lock so status reads see "stopping" right away.
        self._set_monitoring(False)
        async with self._lifecycle_lock:
            results = await asyncio.gather(
                *(session.stop_monitoring() for session in self._sessions.values()),
                return_exceptions=True,
            )
            for result in results:
                if isinstance(result, BaseException):
                    LOGGER.error("Stopping a session failed", exc_info=result)
            # A start_all that held the lock when we were called set it again.
            self._set_monitoring(False)
        LOGGER.info("Monitoring stopped on all accounts")

    @staticmethod
    async def _cancel(task: Optional[asyncio.Task]) -> None:
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def close(self) -> None:
        """Cancel background work and disconnect every session."""

        self._set_monitoring(False)
        await self._cancel(self._sweeper)
        await self._cancel(self._syncer)
        self._sweeper = None
        self._syncer = None
        await asyncio.gather(
            *(session.close() for session in self._sessions.values()),
            return_exceptions=True,
        )
        await self.drain()

    # -- routing ---------------------------------------------------------

    async def on_message(self, message: Message) -> None:
        """Entry point for every message produced by an account session."""

        try:
            fingerprint = compute_fingerprint(message)
            if not self._dedup.observe(fingerprint):
                LOGGER.debug("Duplicate message skipped (chat %s)", message.source_chat_id)
                return

            target = self._state.target_chat_id
            if target is None:
                LOGGER.warning("No target chat configured, skipping message")
                return

            outcome = match_rules(message, self._rules, self._matching.fuzzy_threshold)
            if not outcome.forward:
                if outcome.matched:
                    LOGGER.info("Message from %s dropped, %s", message.sender_name, outcome.reason)
                else:
                    LOGGER.debug("No keyword matched message from %s", message.sender_name)
                return

            text = self._render(message, outcome.matched)
        except Exception:
            LOGGER.exception("Error while routing a message from account %s", message.account_id)
            return

        task = asyncio.create_task(self._deliver(target, text, message, outcome.labels))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, target: int, text: str, message: Message, labels: List[str]) -> None:
        try:
            result = await self._sink.send(target, text)
        except Exception:
            LOGGER.exception("Forwarding to %s failed", target)
            return
        if result.ok:
            LOGGER.info(
                "Forwarded: account=%s sender=%s keywords=%s",
                message.account_id,
                message.sender_name,
                ", ".join(labels),
            )
        else:
            LOGGER.error("Forwarding to %s failed: %s", target, result.detail)

    async def drain(self) -> None:
        """Wait for in-flight forwards to finish."""

        while self._deliveries:
            await asyncio.gather(*list(self._deliveries), return_exceptions=True)
