"""Telethon implementation of the chat client port.

The adapter keeps what the network returned during a login (phone, code
hash, a code waiting for sign-up) between calls. Which step comes next is
decided by the core; each step has its own method. Telethon's exceptions
are translated into core errors.
"""

from __future__ import annotations

import logging
from typing import Optional

from telethon import TelegramClient, errors, events

from adapters.telegram_mapper import build_message_update, build_snapshot
from core.errors import AuthenticationFailure, InvariantViolation, TransientIOError
from core.models import AuthStep, DialogSnapshot
from core.ports import UpdateHandler

LOGGER = logging.getLogger(__name__)


class TelethonChatClient:
    """Wraps one TelegramClient (one account, one session file)."""

    def __init__(self, client: TelegramClient) -> None:
        self._client = client
        self._phone: Optional[str] = None
        self._phone_code_hash: Optional[str] = None
        self._code: Optional[str] = None
        self._handler = None

    async def connect(self) -> None:
        if not self._client.is_connected():
            await self._client.connect()

    async def is_authorized(self) -> bool:
        return await self._client.is_user_authorized()

    def _reset_flow(self) -> None:
        self._phone = None
        self._phone_code_hash = None
        self._code = None

    def _require_code_request(self) -> None:
        if self._phone is None or self._phone_code_hash is None:
            raise InvariantViolation("No verification code was requested for this client")

    async def request_code(self, phone: str) -> AuthStep:
        if await self._client.is_user_authorized():
            self._reset_flow()
            return AuthStep.DONE
        try:
            sent = await self._client.send_code_request(phone)
        except (errors.PhoneNumberInvalidError, errors.PhoneNumberBannedError) as exc:
            raise AuthenticationFailure(str(exc)) from exc
        self._phone = phone
        self._phone_code_hash = sent.phone_code_hash
        self._code = None
        LOGGER.info("Verification code requested")
        return AuthStep.NEED_CODE

    async def submit_code(self, code: str) -> AuthStep:
        self._require_code_request()
        try:
            await self._client.sign_in(
                phone=self._phone,
                code=code,
                phone_code_hash=self._phone_code_hash,
            )
        except errors.SessionPasswordNeededError:
            return AuthStep.NEED_PASSWORD
        except errors.PhoneNumberUnoccupiedError:
            self._code = code
            return AuthStep.NEED_NAME
        except errors.PhoneCodeExpiredError:
            LOGGER.info("Verification code expired, requesting a new one")
            return await self.request_code(self._phone)
        except errors.PhoneCodeInvalidError as exc:
            raise AuthenticationFailure(str(exc)) from exc
        self._reset_flow()
        return AuthStep.DONE

    async def submit_password(self, password: str) -> AuthStep:
        try:
            await self._client.sign_in(password=password)
        except errors.PasswordHashInvalidError as exc:
            raise AuthenticationFailure(str(exc)) from exc
        self._reset_flow()
        return AuthStep.DONE

    async def submit_name(self, first_name: str) -> AuthStep:
        self._require_code_request()
        await self._client.sign_up(
            code=self._code,
            first_name=first_name,
            phone=self._phone,
            phone_code_hash=self._phone_code_hash,
        )
        self._reset_flow()
        return AuthStep.DONE

    async def fetch_dialogs(self) -> DialogSnapshot:
        entities = []
        try:
            async for dialog in self._client.iter_dialogs():
                entities.append(dialog.entity)
        except (errors.RPCError, ConnectionError) as exc:
            raise TransientIOError(f"Fetching dialogs failed: {exc}") from exc
        return build_snapshot(entities)

    def subscribe_updates(self, handler: UpdateHandler) -> None:
        self.unsubscribe_updates()

        async def on_new_message(event) -> None:
            await handler(build_message_update(event.message))

        self._client.add_event_handler(on_new_message, events.NewMessage())
        self._handler = on_new_message

    def unsubscribe_updates(self) -> None:
        if self._handler is None:
            return
        self._client.remove_event_handler(self._handler)
        self._handler = None

    async def disconnect(self) -> None:
        self.unsubscribe_updates()
        await self._client.disconnect()
