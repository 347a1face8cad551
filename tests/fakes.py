from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Dict, List, Optional

from core.models import (
    AccountConfig,
    AuthStep,
    ChatInfo,
    ChatKind,
    DialogSnapshot,
    MessageUpdate,
    PeerKey,
    PeerKind,
    SendResult,
    UserInfo,
)
from core.rules_engine import build_rules

API_HASH = "0123456789abcdef0123456789abcdef"
WHEN = datetime(2024, 1, 1, 12, 30, 15, tzinfo=timezone.utc)

NEWSROOM = ChatInfo(id=500, kind=ChatKind.GROUP, title="Newsroom", username="newsroom")
ALICE = UserInfo(id=42, first_name="Alice", last_name="Smith", username="alice")


def make_account(account_id: int = 1, name: str = "main", **overrides) -> AccountConfig:
    values = dict(
        id=account_id,
        name=name,
        api_id=12345,
        api_hash=API_HASH,
        phone_number="+15550001111",
    )
    values.update(overrides)
    return AccountConfig(**values)


def make_update(
    text: str,
    *,
    chat: ChatInfo = NEWSROOM,
    sender: Optional[UserInfo] = ALICE,
    date: datetime = WHEN,
    attach: bool = True,
) -> MessageUpdate:
    return MessageUpdate(
        peer=PeerKey(PeerKind.CHANNEL, chat.id),
        sender=PeerKey(PeerKind.USER, sender.id) if sender else None,
        text=text,
        date=date,
        users=(sender,) if (attach and sender) else (),
        chats=(chat,) if attach else (),
    )


class FakeChatClient:
    def __init__(self, authorized: bool = True, steps: Optional[List] = None) -> None:
        self.authorized = authorized
        self.steps = list(steps or [])
        self.calls: List[tuple] = []
        self.snapshot = DialogSnapshot(users=(ALICE,), chats=(NEWSROOM,))
        self.handler = None
        self.connects = 0
        self.disconnects = 0
        self.fail_fetch = False
        self.fetch_delay = 0.0

    @property
    def credentials(self) -> List[str]:
        return [credential for _, credential in self.calls]

    async def connect(self) -> None:
        self.connects += 1

    async def is_authorized(self) -> bool:
        return self.authorized

    def _next_step(self, call: str, credential: str) -> AuthStep:
        self.calls.append((call, credential))
        step = self.steps.pop(0)
        if isinstance(step, Exception):
            raise step
        if step is AuthStep.DONE:
            self.authorized = True
        return step

    async def request_code(self, phone: str) -> AuthStep:
        return self._next_step("request_code", phone)

    async def submit_code(self, code: str) -> AuthStep:
        return self._next_step("submit_code", code)

    async def submit_password(self, password: str) -> AuthStep:
        return self._next_step("submit_password", password)

    async def submit_name(self, first_name: str) -> AuthStep:
        return self._next_step("submit_name", first_name)

    async def fetch_dialogs(self) -> DialogSnapshot:
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fail_fetch:
            raise ConnectionError("dialogs unavailable")
        return self.snapshot

    def subscribe_updates(self, handler) -> None:
        self.handler = handler

    def unsubscribe_updates(self) -> None:
        self.handler = None

    async def disconnect(self) -> None:
        self.disconnects += 1
        self.handler = None

    async def emit(self, update) -> None:
        if self.handler is not None:
            await self.handler(update)


class FakeClientFactory:
    """Hands out FakeChatClients and remembers every one it created."""

    def __init__(self, authorized: bool = True) -> None:
        self.authorized = authorized
        self.created: Dict[int, List[FakeChatClient]] = {}

    def __call__(self, account: AccountConfig) -> FakeChatClient:
        client = FakeChatClient(authorized=self.authorized)
        self.created.setdefault(account.id, []).append(client)
        return client

    def latest(self, account_id: int) -> FakeChatClient:
        return self.created[account_id][-1]


class FakeStorage:
    def __init__(self, accounts=(), keywords=()) -> None:
        self.accounts: Dict[int, AccountConfig] = {account.id: account for account in accounts}
        self.config: Dict[str, str] = {}
        self.keywords = list(keywords)
        self.updates: List[int] = []
        self.rule_reads = 0
        self._next_id = max(self.accounts, default=0) + 1

    def list_accounts(self) -> List[AccountConfig]:
        return list(self.accounts.values())

    def get_account(self, account_id: int) -> Optional[AccountConfig]:
        return self.accounts.get(account_id)

    def add_account(self, account: AccountConfig) -> AccountConfig:
        account.id = self._next_id
        self._next_id += 1
        self.accounts[account.id] = account
        return account

    def update_account(self, account: AccountConfig) -> None:
        self.updates.append(account.id)
        self.accounts[account.id] = account

    def delete_account(self, account_id: int) -> bool:
        return self.accounts.pop(account_id, None) is not None

    def get_config(self, key: str) -> Optional[str]:
        return self.config.get(key)

    def set_config(self, key: str, value: str, description: str = "") -> None:
        self.config[key] = value

    def list_keywords(self) -> List[dict]:
        return list(self.keywords)

    def add_keyword(self, keyword: dict) -> int:
        keyword = dict(keyword, id=len(self.keywords) + 1)
        self.keywords.append(keyword)
        return keyword["id"]

    def delete_keyword(self, keyword_id: int) -> bool:
        before = len(self.keywords)
        self.keywords = [keyword for keyword in self.keywords if keyword.get("id") != keyword_id]
        return len(self.keywords) < before

    def list_active_rules(self):
        self.rule_reads += 1
        return build_rules(self.keywords)


class FakeSink:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.sent: List[tuple] = []

    async def send(self, chat_id: int, text: str) -> SendResult:
        self.sent.append((chat_id, text))
        return SendResult(ok=self.ok, detail="" if self.ok else "rejected")


def render_labels(message, rules) -> str:
    return f"{message.content} | {', '.join(rule.content for rule in rules)}"
