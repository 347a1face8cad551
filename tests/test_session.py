from __future__ import annotations

import asyncio
from datetime import datetime, timezone

import pytest

from core.errors import AuthenticationFailure, ConfigurationError, NotLoggedInError
from core.models import AuthStep, ChatInfo, ChatKind, DialogSnapshot, LoginResult, MonitorStartResult, SessionState
from core.session import AccountSession, normalize_phone
from fakes import ALICE, NEWSROOM, FakeChatClient, make_account, make_update

LOGIN_TIME = datetime(2024, 2, 2, 8, 0, tzinfo=timezone.utc)


def _session(client: FakeChatClient, received=None, account=None):
    received = received if received is not None else []

    async def on_message(message) -> None:
        received.append(message)

    return AccountSession(
        account or make_account(),
        lambda account: client,
        on_message,
        clock=lambda: LOGIN_TIME,
    )


def test_normalize_phone_strips_spaces() -> None:
    assert normalize_phone("+1 555 000 1111") == "+15550001111"


@pytest.mark.parametrize("raw", ["", "12345", "+0123456789", "phone"])
def test_normalize_phone_rejects_bad_numbers(raw: str) -> None:
    with pytest.raises(ConfigurationError):
        normalize_phone(raw)


def test_login_walks_through_code_and_password() -> None:
    client = FakeChatClient(
        authorized=False,
        steps=[AuthStep.NEED_CODE, AuthStep.NEED_PASSWORD, AuthStep.DONE],
    )
    session = _session(client)

    async def scenario():
        first = await session.login()
        state_after_code = session.state
        second = await session.login("12345")
        third = await session.login("hunter2")
        return first, state_after_code, second, third

    first, state_after_code, second, third = asyncio.run(scenario())
    assert first is LoginResult.WAITING_FOR_CODE
    assert state_after_code is SessionState.AWAITING_CODE
    assert second is LoginResult.WAITING_FOR_PASSWORD
    assert third is LoginResult.LOGGED_IN
    assert client.credentials == ["+15550001111", "12345", "hunter2"]
    assert session.account.is_logged_in
    assert session.account.last_login_time == LOGIN_TIME


def test_login_answers_name_requests_until_done() -> None:
    client = FakeChatClient(
        authorized=False,
        steps=[AuthStep.NEED_CODE, AuthStep.NEED_NAME, AuthStep.NEED_NAME, AuthStep.DONE],
    )
    session = _session(client)

    async def scenario():
        await session.login()
        return await session.login("12345")

    assert asyncio.run(scenario()) is LoginResult.LOGGED_IN
    assert client.calls == [
        ("request_code", "+15550001111"),
        ("submit_code", "12345"),
        ("submit_name", "Monitor_main"),
        ("submit_name", "Monitor_main"),
    ]


def test_fresh_login_always_starts_from_stored_phone() -> None:
    client = FakeChatClient(authorized=False, steps=[AuthStep.NEED_CODE])
    session = _session(client)

    result = asyncio.run(session.login("12345"))

    assert result is LoginResult.WAITING_FOR_CODE
    assert client.calls == [("request_code", "+15550001111")]


def test_rejected_code_keeps_waiting_for_a_corrected_code() -> None:
    client = FakeChatClient(
        authorized=False,
        steps=[AuthStep.NEED_CODE, AuthenticationFailure("code expired"), AuthStep.DONE],
    )
    session = _session(client)

    async def scenario():
        first = await session.login()
        second = await session.login("11111")
        state_after_failure = session.state
        third = await session.login("22222")
        return first, second, state_after_failure, third

    first, second, state_after_failure, third = asyncio.run(scenario())
    assert first is LoginResult.WAITING_FOR_CODE
    assert second is LoginResult.FAILED
    assert state_after_failure is SessionState.AWAITING_CODE
    assert third is LoginResult.LOGGED_IN
    assert client.calls == [
        ("request_code", "+15550001111"),
        ("submit_code", "11111"),
        ("submit_code", "22222"),
    ]


def test_empty_code_does_not_reach_the_client() -> None:
    client = FakeChatClient(authorized=False, steps=[AuthStep.NEED_CODE])
    session = _session(client)

    async def scenario():
        await session.login()
        return await session.login("   ")

    assert asyncio.run(scenario()) is LoginResult.WAITING_FOR_CODE
    assert client.calls == [("request_code", "+15550001111")]


def test_login_is_a_no_op_when_active() -> None:
    client = FakeChatClient(authorized=True)
    session = _session(client)

    async def scenario():
        await session.resume()
        return await session.login("ignored")

    assert asyncio.run(scenario()) is LoginResult.LOGGED_IN
    assert client.credentials == []


def test_rejected_phone_marks_session_disconnected() -> None:
    client = FakeChatClient(authorized=False, steps=[AuthenticationFailure("phone number invalid")])
    session = _session(client)

    result = asyncio.run(session.login())

    assert result is LoginResult.FAILED
    assert session.state is SessionState.DISCONNECTED
    assert not session.account.is_logged_in


def test_login_with_invalid_phone_raises_before_connecting() -> None:
    client = FakeChatClient(authorized=False)
    session = _session(client, account=make_account(phone_number="not-a-phone"))

    with pytest.raises(ConfigurationError):
        asyncio.run(session.login())
    assert client.connects == 0


def test_list_dialogs_requires_login() -> None:
    session = _session(FakeChatClient(authorized=False))
    with pytest.raises(NotLoggedInError):
        asyncio.run(session.list_dialogs())


def test_list_dialogs_returns_sendable_chats_with_marked_ids() -> None:
    client = FakeChatClient(authorized=True)
    readonly = ChatInfo(id=600, kind=ChatKind.CHANNEL, title="Announcements")
    client.snapshot = DialogSnapshot(users=(ALICE,), chats=(NEWSROOM, readonly))
    session = _session(client)

    async def scenario():
        await session.resume()
        return await session.list_dialogs()

    dialogs = asyncio.run(scenario())
    assert [(entry.id, entry.title) for entry in dialogs] == [
        (-1000000000500, "[Group](@newsroom)Newsroom"),
    ]


def test_start_monitoring_requires_login() -> None:
    session = _session(FakeChatClient(authorized=False))
    assert asyncio.run(session.start_monitoring()) is MonitorStartResult.ERROR


def test_update_is_normalized_into_message() -> None:
    client = FakeChatClient(authorized=True)
    received = []
    session = _session(client, received)

    async def scenario():
        await session.resume()
        assert await session.start_monitoring() is MonitorStartResult.STARTED
        assert await session.start_monitoring() is MonitorStartResult.ALREADY_RUNNING
        await client.emit(make_update("hello", attach=False))

    asyncio.run(scenario())
    assert len(received) == 1
    message = received[0]
    assert message.sender_id == 42
    assert message.sender_name == "Alice Smith"
    assert message.sender_aliases == ("alice",)
    assert message.source_chat_id == 500
    assert message.source_chat_name == "Newsroom"
    assert message.content == "hello"


def test_channel_post_uses_origin_as_sender() -> None:
    client = FakeChatClient(authorized=True)
    received = []
    session = _session(client, received)

    async def scenario():
        await session.resume()
        await session.start_monitoring()
        await client.emit(make_update("post", sender=None))

    asyncio.run(scenario())
    assert received[0].sender_id == 500
    assert received[0].sender_name == "Newsroom"


def test_unknown_peer_is_dropped_silently() -> None:
    client = FakeChatClient(authorized=True)
    received = []
    session = _session(client, received)
    stranger = ChatInfo(id=999, kind=ChatKind.GROUP, title="Stranger")

    async def scenario():
        await session.resume()
        await session.start_monitoring()
        await client.emit(make_update("hi", chat=stranger, attach=False))

    asyncio.run(scenario())
    assert received == []


def test_non_message_updates_are_ignored() -> None:
    client = FakeChatClient(authorized=True)
    received = []
    session = _session(client, received)

    async def scenario():
        await session.resume()
        await session.start_monitoring()
        await client.emit(object())

    asyncio.run(scenario())
    assert received == []


def test_callback_errors_do_not_end_the_subscription() -> None:
    client = FakeChatClient(authorized=True)
    calls = []

    async def on_message(message) -> None:
        calls.append(message.content)
        raise RuntimeError("boom")

    session = AccountSession(make_account(), lambda account: client, on_message)

    async def scenario():
        await session.resume()
        await session.start_monitoring()
        await client.emit(make_update("one"))
        await client.emit(make_update("two"))
        return session.is_monitoring

    assert asyncio.run(scenario())
    assert calls == ["one", "two"]


def test_stop_waits_for_in_flight_message() -> None:
    client = FakeChatClient(authorized=True)
    gate = asyncio.Event()
    finished = []

    async def on_message(message) -> None:
        await gate.wait()
        finished.append(message.content)

    session = AccountSession(make_account(), lambda account: client, on_message)

    async def scenario():
        await session.resume()
        await session.start_monitoring()
        pending = asyncio.create_task(client.emit(make_update("slow")))
        await asyncio.sleep(0)
        stopping = asyncio.create_task(session.stop_monitoring())
        await asyncio.sleep(0)
        assert not stopping.done()
        gate.set()
        await asyncio.gather(pending, stopping)

    asyncio.run(scenario())
    assert finished == ["slow"]


def test_close_disconnects_client() -> None:
    client = FakeChatClient(authorized=True)
    session = _session(client)

    async def scenario():
        await session.resume()
        await session.start_monitoring()
        await session.close()

    asyncio.run(scenario())
    assert client.disconnects == 1
    assert client.handler is None
    assert session.state is SessionState.DISCONNECTED
