"""Ports (interfaces) used by the core.

Ports define the minimal contracts for the chat client, storage and
forwarding adapters so that the core can be reused with different backends
and exercised with fakes in tests.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, List, Optional, Protocol

from core.models import AccountConfig, AuthStep, DialogSnapshot, SendResult
from core.rules_engine import KeywordRule

UpdateHandler = Callable[[Any], Awaitable[None]]


class ChatClientPort(Protocol):
    """One logged-in (or logging-in) connection to the chat network.

    The login calls map one-to-one to the steps of the flow; the caller
    decides which step it is in and the client only remembers what the
    network handed back (phone code hash, pending code).
    """

    async def connect(self) -> None:
        ...

    async def is_authorized(self) -> bool:
        ...

    async def request_code(self, phone: str) -> AuthStep:
        ...

    async def submit_code(self, code: str) -> AuthStep:
        ...

    async def submit_password(self, password: str) -> AuthStep:
        ...

    async def submit_name(self, first_name: str) -> AuthStep:
        ...

    async def fetch_dialogs(self) -> DialogSnapshot:
        ...

    def subscribe_updates(self, handler: UpdateHandler) -> None:
        ...

    def unsubscribe_updates(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...


class AccountStorePort(Protocol):
    def list_accounts(self) -> List[AccountConfig]:
        ...

    def get_account(self, account_id: int) -> Optional[AccountConfig]:
        ...

    def add_account(self, account: AccountConfig) -> AccountConfig:
        ...

    def update_account(self, account: AccountConfig) -> None:
        ...

    def delete_account(self, account_id: int) -> bool:
        ...


class ConfigStorePort(Protocol):
    def get_config(self, key: str) -> Optional[str]:
        ...

    def set_config(self, key: str, value: str, description: str = "") -> None:
        ...


class KeywordStorePort(Protocol):
    def list_keywords(self) -> List[dict]:
        ...

    def add_keyword(self, keyword: dict) -> int:
        ...

    def delete_keyword(self, keyword_id: int) -> bool:
        ...

    def list_active_rules(self) -> List[KeywordRule]:
        ...


class StoragePort(AccountStorePort, ConfigStorePort, KeywordStorePort, Protocol):
    """The single store shared by the supervisor, the admin layer and the CLI."""


class ForwardingSinkPort(Protocol):
    """Delivery of a rendered payload to the destination chat."""

    async def send(self, chat_id: int, text: str) -> SendResult:
        ...
