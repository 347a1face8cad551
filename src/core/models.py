"""Core domain models.

These dataclasses are shared across the core and adapters to avoid tight
coupling to any integration-specific types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


@dataclass
class AccountConfig:
    """Identity and credentials of one monitored account.

    Mutable on purpose: login bookkeeping (``last_login_time``,
    ``is_logged_in``) is updated in place by the owning session and then
    persisted by the supervisor.
    """

    id: int
    name: str
    api_id: int
    api_hash: str
    phone_number: str
    is_enabled: bool = True
    created_at: Optional[datetime] = None
    last_login_time: Optional[datetime] = None
    is_logged_in: bool = False


@dataclass(frozen=True)
class AccountStatus:
    """Read-only account view returned to the administrative layer."""

    account_id: int
    name: str
    phone_number: str
    is_logged_in: bool
    is_enabled: bool
    last_login_time: Optional[datetime]


class AuthStep(Enum):
    """What the chat client expects next during a login flow."""

    NEED_CODE = "need_code"
    NEED_PASSWORD = "need_password"
    NEED_NAME = "need_name"
    DONE = "done"


class SessionState(Enum):
    CREATED = "created"
    AWAITING_CODE = "awaiting_code"
    AWAITING_PASSWORD = "awaiting_password"
    ACTIVE = "active"
    DISCONNECTED = "disconnected"


class LoginResult(Enum):
    LOGGED_IN = "logged_in"
    WAITING_FOR_CODE = "waiting_for_code"
    WAITING_FOR_PASSWORD = "waiting_for_password"
    FAILED = "failed"


class MonitorStartResult(Enum):
    STARTED = "started"
    ALREADY_RUNNING = "already_running"
    MISSING_TARGET = "missing_target"
    NO_ACCOUNTS = "no_accounts"
    ERROR = "error"


class PeerKind(Enum):
    USER = "user"
    CHAT = "chat"
    CHANNEL = "channel"


class ChatKind(Enum):
    CHAT = "Chat"
    CHANNEL = "Channel"
    GROUP = "Group"


@dataclass(frozen=True)
class PeerKey:
    """Opaque peer reference as delivered by the chat network."""

    kind: PeerKind
    id: int


@dataclass(frozen=True)
class UserInfo:
    id: int
    first_name: str = ""
    last_name: str = ""
    username: Optional[str] = None
    usernames: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ChatInfo:
    """Chat, supergroup or broadcast channel metadata plus send rights."""

    id: int
    kind: ChatKind
    title: str
    username: Optional[str] = None
    usernames: Tuple[str, ...] = ()
    active: bool = True
    creator: bool = False
    is_admin: bool = False
    can_post: bool = False
    send_banned: bool = False


@dataclass(frozen=True)
class DialogSnapshot:
    users: Tuple[UserInfo, ...] = ()
    chats: Tuple[ChatInfo, ...] = ()


@dataclass(frozen=True)
class MessageUpdate:
    """A new-message update, with whatever entities came attached to it."""

    peer: Optional[PeerKey]
    sender: Optional[PeerKey]
    text: str
    date: datetime
    users: Tuple[UserInfo, ...] = ()
    chats: Tuple[ChatInfo, ...] = ()


@dataclass(frozen=True)
class PeerRef:
    """Resolved remote identity."""

    id: int
    title: str
    primary_alias: str = ""
    aliases: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Message:
    """Normalized message handed from an account session to the supervisor."""

    account_id: int
    sender_id: int
    sender_name: str
    source_chat_id: int
    source_chat_name: str
    content: str
    date: datetime
    sender_aliases: Tuple[str, ...] = field(default=())


@dataclass(frozen=True)
class DialogEntry:
    id: int
    title: str


@dataclass(frozen=True)
class SendResult:
    ok: bool
    detail: str = ""
