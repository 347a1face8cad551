"""Per-account peer resolution cache.

Each account session owns one cache. Entries are filled from dialog
snapshots and from entities attached to updates; resolution never reaches
out to the network, an unknown peer simply resolves to ``None``.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

from core.models import ChatInfo, ChatKind, DialogEntry, DialogSnapshot, PeerKey, PeerKind, PeerRef, UserInfo

CHANNEL_ID_OFFSET = 1000000000000


def marked_peer_id(kind: PeerKind, raw_id: int) -> int:
    """Return the Bot API style id: users as-is, chats negated, channels -100<id>."""

    if kind is PeerKind.USER:
        return raw_id
    if kind is PeerKind.CHAT:
        return -raw_id
    return -(CHANNEL_ID_OFFSET + raw_id)


def user_display_name(user: UserInfo) -> str:
    name = " ".join(part for part in (user.first_name, user.last_name) if part).strip()
    if name:
        return name
    if user.username:
        return user.username
    return str(user.id)


def _aliases(primary: Optional[str], others: Iterable[str]) -> Tuple[str, ...]:
    result = []
    for alias in ([primary] if primary else []) + list(others):
        if alias and alias not in result:
            result.append(alias)
    return tuple(result)


def can_send(chat: ChatInfo) -> bool:
    """Whether the account may post into this chat."""

    if chat.kind is ChatKind.CHAT:
        return chat.active and not chat.send_banned
    if not chat.active:
        return False
    if chat.kind is ChatKind.CHANNEL:
        return chat.creator or chat.can_post
    return chat.creator or chat.is_admin or not chat.send_banned


def dialog_title(chat: ChatInfo) -> str:
    alias = f"(@{chat.username})" if chat.username else ""
    return f"[{chat.kind.value}]{alias}{chat.title}"


def _peer_kind(chat: ChatInfo) -> PeerKind:
    return PeerKind.CHAT if chat.kind is ChatKind.CHAT else PeerKind.CHANNEL


class PeerCache:
    """id -> metadata tables for users and chats, scoped to one account."""

    def __init__(self) -> None:
        self._users: Dict[int, UserInfo] = {}
        self._chats: Dict[int, ChatInfo] = {}

    def __len__(self) -> int:
        return len(self._users) + len(self._chats)

    def absorb(self, users: Iterable[UserInfo] = (), chats: Iterable[ChatInfo] = ()) -> None:
        for user in users:
            self._users[user.id] = user
        for chat in chats:
            self._chats[chat.id] = chat

    def absorb_snapshot(self, snapshot: DialogSnapshot) -> None:
        self.absorb(snapshot.users, snapshot.chats)

    def chats(self) -> Tuple[ChatInfo, ...]:
        return tuple(self._chats.values())

    def clear(self) -> None:
        self._users.clear()
        self._chats.clear()

    def resolve(self, peer: Optional[PeerKey]) -> Optional[PeerRef]:
        if peer is None:
            return None
        if peer.kind is PeerKind.USER:
            user = self._users.get(peer.id)
            if user is None:
                return None
            return PeerRef(
                id=user.id,
                title=user_display_name(user),
                primary_alias=user.username or "",
                aliases=_aliases(user.username, user.usernames),
            )
        chat = self._chats.get(peer.id)
        if chat is None or _peer_kind(chat) is not peer.kind:
            return None
        return PeerRef(
            id=chat.id,
            title=chat.title,
            primary_alias=chat.username or "",
            aliases=_aliases(chat.username, chat.usernames),
        )


def sendable_dialogs(snapshot: DialogSnapshot) -> List[DialogEntry]:
    """Dialogs from a snapshot the account can post to, with marked ids."""

    return [
        DialogEntry(id=marked_peer_id(_peer_kind(chat), chat.id), title=dialog_title(chat))
        for chat in snapshot.chats
        if can_send(chat)
    ]
