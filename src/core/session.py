"""Account session: login state machine, dialogs and update ingestion.

One session exists per enabled account. It owns the chat client connection,
the account's peer cache and the update subscription. Accepted updates are
normalized into :class:`core.models.Message` and handed to the supervisor.
"""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timezone
from typing import Awaitable, Callable, List

from core.errors import AuthenticationFailure, ConfigurationError, InvariantViolation, NotLoggedInError
from core.models import (
    AccountConfig,
    AuthStep,
    DialogEntry,
    LoginResult,
    Message,
    MessageUpdate,
    MonitorStartResult,
    SessionState,
)
from core.peers import PeerCache, sendable_dialogs
from core.ports import ChatClientPort

LOGGER = logging.getLogger(__name__)

PHONE_RE = re.compile(r"^\+?[1-9]\d{6,14}$")
# Prefix of the display name sent when the network asks to register a name.
SIGN_UP_NAME_PREFIX = "Monitor"

ClientFactory = Callable[[AccountConfig], ChatClientPort]
MessageCallback = Callable[[Message], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_phone(raw: str) -> str:
    """Strip spaces and validate the E.164 shape of a phone number."""

    phone = raw.replace(" ", "").strip()
    if not PHONE_RE.match(phone):
        raise ConfigurationError(f"Phone number {raw!r} is not in international format")
    return phone


class AccountSession:
    """Lifecycle of one monitored account."""

    def __init__(
        self,
        account: AccountConfig,
        client_factory: ClientFactory,
        on_message: MessageCallback,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.account = account
        self._client_factory = client_factory
        self._client = client_factory(account)
        self._on_message = on_message
        self._clock = clock
        self._peers = PeerCache()
        self._state = SessionState.CREATED
        self._monitoring = False
        self._subscribed = False
        self._inflight = 0
        self._idle = asyncio.Event()
        self._idle.set()

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_logged_in(self) -> bool:
        return self._state is SessionState.ACTIVE

    @property
    def is_monitoring(self) -> bool:
        return self._monitoring and self.is_logged_in

    @property
    def peers(self) -> PeerCache:
        return self._peers

    def _mark_logged_in(self) -> None:
        self._state = SessionState.ACTIVE
        self.account.last_login_time = self._clock()
        self.account.is_logged_in = True

    def _mark_logged_out(self, state: SessionState) -> None:
        self._state = state
        self.account.is_logged_in = False

    async def login(self, credential: str = "") -> LoginResult:
        """Advance the login flow with the next credential.

        The step is chosen from the session state. A fresh or failed flow
        always starts from the stored phone number and ignores the
        credential; after that come the verification code and the
        two-factor password. Name requests are answered automatically. A
        rejected code or password keeps the flow at that step so the caller
        can retry with corrected input.
        """

        state = self._state
        if state is SessionState.ACTIVE:
            return LoginResult.LOGGED_IN

        phone = normalize_phone(self.account.phone_number)
        credential = credential.strip()
        if state is SessionState.AWAITING_CODE and not credential:
            return LoginResult.WAITING_FOR_CODE
        if state is SessionState.AWAITING_PASSWORD and not credential:
            return LoginResult.WAITING_FOR_PASSWORD

        try:
            await self._client.connect()
            if state is SessionState.AWAITING_CODE:
                step = await self._client.submit_code(credential)
            elif state is SessionState.AWAITING_PASSWORD:
                step = await self._client.submit_password(credential)
            elif state in (SessionState.CREATED, SessionState.DISCONNECTED):
                if credential:
                    LOGGER.debug("Account %s: login starts from the stored phone, credential ignored", self.account.name)
                step = await self._client.request_code(phone)
            else:
                raise InvariantViolation(f"Unexpected session state {state!r}")
            while step is AuthStep.NEED_NAME:
                step = await self._client.submit_name(f"{SIGN_UP_NAME_PREFIX}_{self.account.name}")
        except AuthenticationFailure as exc:
            LOGGER.warning("Login of account %s rejected: %s", self.account.name, exc)
            if state not in (SessionState.AWAITING_CODE, SessionState.AWAITING_PASSWORD):
                self._mark_logged_out(SessionState.DISCONNECTED)
            return LoginResult.FAILED
        except Exception:
            LOGGER.exception("Login of account %s failed", self.account.name)
            self._mark_logged_out(SessionState.DISCONNECTED)
            return LoginResult.FAILED

        return self._apply_step(step)

    def _apply_step(self, step: AuthStep) -> LoginResult:
        if step is AuthStep.DONE:
            self._mark_logged_in()
            LOGGER.info("Account %s logged in", self.account.name)
            return LoginResult.LOGGED_IN
        if step is AuthStep.NEED_CODE:
            self._mark_logged_out(SessionState.AWAITING_CODE)
            return LoginResult.WAITING_FOR_CODE
        if step is AuthStep.NEED_PASSWORD:
            self._mark_logged_out(SessionState.AWAITING_PASSWORD)
            return LoginResult.WAITING_FOR_PASSWORD
        raise InvariantViolation(f"Unexpected login step {step!r}")

    async def resume(self) -> bool:
        """Reconnect and reuse the persisted authorization, without sending a code."""

        try:
            await self._client.connect()
            authorized = await self._client.is_authorized()
        except Exception:
            LOGGER.exception("Reconnecting account %s failed", self.account.name)
            self._mark_logged_out(SessionState.DISCONNECTED)
            return False

        if authorized:
            self._mark_logged_in()
            LOGGER.info("Account %s restored from its saved session", self.account.name)
            return True
        self._mark_logged_out(SessionState.CREATED)
        LOGGER.info("Account %s needs to log in again", self.account.name)
        return False

    def _require_active(self) -> None:
        if self._state is not SessionState.ACTIVE:
            raise NotLoggedInError(f"Account {self.account.name} is not logged in")

    async def list_dialogs(self) -> List[DialogEntry]:
        """Dialogs the account can post to, as (marked id, title) pairs."""

        self._require_active()
        snapshot = await self._client.fetch_dialogs()
        self._peers.absorb_snapshot(snapshot)
        return sendable_dialogs(snapshot)

    async def start_monitoring(self) -> MonitorStartResult:
        if self._state is not SessionState.ACTIVE:
            LOGGER.warning("Account %s is not logged in, cannot start monitoring", self.account.name)
            return MonitorStartResult.ERROR
        if self._monitoring:
            return MonitorStartResult.ALREADY_RUNNING

        try:
            # Updates may reference peers we have never seen, so refresh first.
            snapshot = await self._client.fetch_dialogs()
            self._peers.absorb_snapshot(snapshot)
            self._client.subscribe_updates(self._handle_update)
            self._subscribed = True
        except Exception:
            LOGGER.exception("Starting monitoring for account %s failed", self.account.name)
            self._unsubscribe()
            return MonitorStartResult.ERROR

        self._monitoring = True
        LOGGER.info("Monitoring started for account %s (%s peers cached)", self.account.name, len(self._peers))
        return MonitorStartResult.STARTED

    def _unsubscribe(self) -> None:
        if not self._subscribed:
            return
        self._subscribed = False
        try:
            self._client.unsubscribe_updates()
        except Exception:
            LOGGER.exception("Unsubscribing account %s failed", self.account.name)

    async def _drain(self) -> None:
        self._monitoring = False
        self._unsubscribe()
        await self._idle.wait()

    async def reconnect(self) -> bool:
        """Rebuild the client from the persisted session and restore the login.

        Picks up an authorization written to the session file by another
        client (a login done from a separate process).
        """

        try:
            await self._client.disconnect()
        except Exception:
            LOGGER.exception("Disconnecting account %s failed", self.account.name)

        self._client = self._client_factory(self.account)
        self._peers.clear()
        self._state = SessionState.CREATED
        return await self.resume()

    async def stop_monitoring(self) -> None:
        """Unsubscribe, rebuild the connection and restore the saved login.

        Never raises: a failed reconnect leaves the session logged out and the
        next ``start_monitoring`` reports it as ``ERROR``.
        """

        was_subscribed = self._subscribed
        await self._drain()
        if not was_subscribed:
            LOGGER.info("Account %s was not monitoring", self.account.name)
            return

        await self.reconnect()
        LOGGER.info("Monitoring stopped for account %s", self.account.name)

    async def close(self) -> None:
        """Tear the session down for good (account removed or process exit)."""

        await self._drain()
        try:
            await self._client.disconnect()
        except Exception:
            LOGGER.exception("Disconnecting account %s failed", self.account.name)
        self._mark_logged_out(SessionState.DISCONNECTED)

    async def _handle_update(self, update: object) -> None:
        if not self._monitoring:
            return
        self._inflight += 1
        self._idle.clear()
        try:
            await self._dispatch(update)
        except Exception:
            LOGGER.exception("Account %s failed to handle an update", self.account.name)
        finally:
            self._inflight -= 1
            if not self._inflight:
                self._idle.set()

    async def _dispatch(self, update: object) -> None:
        if not isinstance(update, MessageUpdate):
            return

        self._peers.absorb(update.users, update.chats)
        origin = self._peers.resolve(update.peer)
        if origin is None:
            LOGGER.debug("Account %s: unknown origin peer %s, update dropped", self.account.name, update.peer)
            return

        if update.sender is None:
            # Channel posts and our own messages carry no separate sender.
            sender = origin
        else:
            sender = self._peers.resolve(update.sender)
            if sender is None:
                LOGGER.debug("Account %s: unknown sender %s, update dropped", self.account.name, update.sender)
                return

        message = Message(
            account_id=self.account.id,
            sender_id=sender.id,
            sender_name=sender.title,
            source_chat_id=origin.id,
            source_chat_name=origin.title,
            content=update.text or "",
            date=update.date,
            sender_aliases=sender.aliases,
        )
        await self._on_message(message)
