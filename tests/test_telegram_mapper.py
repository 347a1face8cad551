from __future__ import annotations

from datetime import datetime, timezone

from telethon.tl import types

from adapters.telegram_mapper import build_message_update, build_snapshot, map_chat, peer_key
from core.models import ChatKind, PeerKey, PeerKind

WHEN = datetime(2024, 1, 1, tzinfo=timezone.utc)


class DummyMessage:
    def __init__(self, *, peer_id, from_id=None, text="hello", chat=None, sender=None) -> None:
        self.peer_id = peer_id
        self.from_id = from_id
        self.message = text
        self.chat = chat
        self.sender = sender
        self.date = WHEN


def _user(user_id: int = 42) -> types.User:
    return types.User(id=user_id, first_name="Alice", last_name="Smith", username="alice")


def _channel(channel_id: int = 123, *, broadcast: bool = False, **extra) -> types.Channel:
    return types.Channel(
        id=channel_id,
        title="Newsroom",
        photo=types.ChatPhotoEmpty(),
        date=WHEN,
        broadcast=broadcast,
        megagroup=not broadcast,
        username="newsroom",
        **extra,
    )


def test_peer_key_for_each_peer_type() -> None:
    assert peer_key(types.PeerUser(user_id=1)) == PeerKey(PeerKind.USER, 1)
    assert peer_key(types.PeerChat(chat_id=2)) == PeerKey(PeerKind.CHAT, 2)
    assert peer_key(types.PeerChannel(channel_id=3)) == PeerKey(PeerKind.CHANNEL, 3)
    assert peer_key(None) is None


def test_map_basic_chat() -> None:
    chat = types.Chat(id=7, title="Family", photo=types.ChatPhotoEmpty(), participants_count=3, date=WHEN, version=1)
    info = map_chat(chat)
    assert info.kind is ChatKind.CHAT
    assert info.active
    assert not info.send_banned


def test_map_channel_and_supergroup() -> None:
    group = map_chat(_channel())
    channel = map_chat(_channel(broadcast=True))
    assert group.kind is ChatKind.GROUP
    assert channel.kind is ChatKind.CHANNEL
    assert channel.username == "newsroom"
    assert not channel.can_post


def test_map_channel_admin_rights() -> None:
    rights = types.ChatAdminRights(post_messages=True)
    info = map_chat(_channel(broadcast=True, admin_rights=rights))
    assert info.is_admin
    assert info.can_post


def test_map_banned_group() -> None:
    banned = types.ChatBannedRights(until_date=None, send_messages=True)
    info = map_chat(_channel(default_banned_rights=banned))
    assert info.send_banned


def test_forbidden_channel_is_inactive() -> None:
    info = map_chat(types.ChannelForbidden(id=9, access_hash=0, title="Gone", broadcast=True))
    assert info.kind is ChatKind.CHANNEL
    assert not info.active


def test_build_snapshot_skips_unknown_entities() -> None:
    snapshot = build_snapshot([_user(), _channel(), None, object()])
    assert [user.id for user in snapshot.users] == [42]
    assert [chat.id for chat in snapshot.chats] == [123]


def test_build_message_update_uses_attached_entities() -> None:
    message = DummyMessage(
        peer_id=types.PeerChannel(channel_id=123),
        from_id=types.PeerUser(user_id=42),
        text="urgent",
        chat=_channel(),
        sender=_user(),
    )
    update = build_message_update(message)
    assert update.peer == PeerKey(PeerKind.CHANNEL, 123)
    assert update.sender == PeerKey(PeerKind.USER, 42)
    assert update.text == "urgent"
    assert update.users[0].first_name == "Alice"
    assert update.chats[0].title == "Newsroom"


def test_build_message_update_channel_post_has_no_sender() -> None:
    message = DummyMessage(peer_id=types.PeerChannel(channel_id=123), text=None)
    update = build_message_update(message)
    assert update.sender is None
    assert update.text == ""
    assert update.users == () and update.chats == ()


def test_default_ban_applies_even_when_member_rights_allow_sending() -> None:
    own = types.ChatBannedRights(until_date=None, send_messages=False)
    default = types.ChatBannedRights(until_date=None, send_messages=True)
    info = map_chat(_channel(banned_rights=own, default_banned_rights=default))
    assert info.send_banned
