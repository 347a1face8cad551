"""Telethon-to-core mapping adapter.

This keeps Telethon-specific details out of the core: entities become
``UserInfo``/``ChatInfo`` and messages become ``MessageUpdate`` values.
Nothing here performs network calls; only entities Telethon already has in
hand are mapped.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple, Union

from telethon.tl import types
from telethon.tl.custom import Message

from core.models import ChatInfo, ChatKind, DialogSnapshot, MessageUpdate, PeerKey, PeerKind, UserInfo


def _active_usernames(entity) -> Tuple[str, ...]:
    names = []
    for item in getattr(entity, "usernames", None) or []:
        value = getattr(item, "username", None)
        if value and getattr(item, "active", True):
            names.append(value)
    return tuple(names)


def _send_banned(*rights) -> bool:
    # Member and default restrictions both apply.
    return any(bool(getattr(item, "send_messages", False)) for item in rights if item is not None)


def map_user(user: types.User) -> UserInfo:
    return UserInfo(
        id=user.id,
        first_name=user.first_name or "",
        last_name=user.last_name or "",
        username=user.username,
        usernames=_active_usernames(user),
    )


def map_chat(chat) -> Optional[ChatInfo]:
    """Map a basic chat, supergroup or channel (forbidden variants included)."""

    if isinstance(chat, types.Chat):
        return ChatInfo(
            id=chat.id,
            kind=ChatKind.CHAT,
            title=chat.title or "",
            active=not (chat.left or chat.deactivated),
            creator=bool(chat.creator),
            is_admin=chat.admin_rights is not None,
            send_banned=_send_banned(chat.default_banned_rights),
        )
    if isinstance(chat, types.ChatForbidden):
        return ChatInfo(id=chat.id, kind=ChatKind.CHAT, title=chat.title or "", active=False)
    if isinstance(chat, types.Channel):
        admin_rights = chat.admin_rights
        return ChatInfo(
            id=chat.id,
            kind=ChatKind.CHANNEL if chat.broadcast else ChatKind.GROUP,
            title=chat.title or "",
            username=chat.username,
            usernames=_active_usernames(chat),
            active=not chat.left,
            creator=bool(chat.creator),
            is_admin=admin_rights is not None,
            can_post=bool(admin_rights is not None and admin_rights.post_messages),
            send_banned=_send_banned(chat.banned_rights, chat.default_banned_rights),
        )
    if isinstance(chat, types.ChannelForbidden):
        return ChatInfo(
            id=chat.id,
            kind=ChatKind.CHANNEL if chat.broadcast else ChatKind.GROUP,
            title=chat.title or "",
            active=False,
        )
    return None


def map_entities(entities: Iterable[object]) -> Tuple[Tuple[UserInfo, ...], Tuple[ChatInfo, ...]]:
    users: List[UserInfo] = []
    chats: List[ChatInfo] = []
    for entity in entities:
        if entity is None:
            continue
        if isinstance(entity, types.User):
            users.append(map_user(entity))
            continue
        chat = map_chat(entity)
        if chat is not None:
            chats.append(chat)
    return tuple(users), tuple(chats)


def build_snapshot(entities: Iterable[object]) -> DialogSnapshot:
    users, chats = map_entities(entities)
    return DialogSnapshot(users=users, chats=chats)


def peer_key(peer: Union[types.PeerUser, types.PeerChat, types.PeerChannel, None]) -> Optional[PeerKey]:
    if isinstance(peer, types.PeerUser):
        return PeerKey(PeerKind.USER, peer.user_id)
    if isinstance(peer, types.PeerChat):
        return PeerKey(PeerKind.CHAT, peer.chat_id)
    if isinstance(peer, types.PeerChannel):
        return PeerKey(PeerKind.CHANNEL, peer.channel_id)
    return None


def build_message_update(message: Message) -> MessageUpdate:
    """Build a core MessageUpdate from a Telethon Message.

    ``message.chat`` and ``message.sender`` are the entities Telethon shipped
    with the update; they are ``None`` when unknown and we never fetch them.
    """

    users, chats = map_entities(
        [getattr(message, "chat", None), getattr(message, "sender", None)]
    )
    return MessageUpdate(
        peer=peer_key(getattr(message, "peer_id", None)),
        sender=peer_key(getattr(message, "from_id", None)),
        text=getattr(message, "message", None) or "",
        date=message.date,
        users=users,
        chats=chats,
    )
