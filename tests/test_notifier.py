"""Tests for delivering notices over existing direct conversations."""

from __future__ import annotations

import asyncio

import pytest

from conftest import ALICE, BOB, BOT_INBOX, TEST_ADDRESS, FakeConversation, FakeMessagingClient, member
from xombi.notifier import XmtpNotifier
from xombi.types import ConversationKind


def _client(*conversations: FakeConversation) -> FakeMessagingClient:
    return FakeMessagingClient(conversations=list(conversations))


@pytest.mark.asyncio
async def test_sends_to_existing_dm(alice_dm: FakeConversation) -> None:
    """The notice lands in the requester's DM."""
    notifier = XmtpNotifier(_client(alice_dm))
    assert await notifier.send_notification(ALICE.upper().replace("0X", "0x"), "ready!") is True
    assert alice_dm.sent == ["ready!"]


@pytest.mark.asyncio
async def test_group_conversations_are_never_used() -> None:
    """Groups containing the requester are skipped."""
    group = FakeConversation(
        "g1",
        [member(BOT_INBOX, TEST_ADDRESS), member("alice-inbox", ALICE)],
        kind=ConversationKind.GROUP,
    )
    client = _client(group)
    notifier = XmtpNotifier(client)
    assert await notifier.send_notification(ALICE, "ready!") is False

    assert group.sent == []
    assert client.created_dms == []
    assert notifier.cached_conversation_count == 0


@pytest.mark.asyncio
async def test_missing_conversation_is_not_created(alice_dm: FakeConversation) -> None:
    """Without an existing DM the notice is dropped."""
    client = _client(alice_dm)
    assert await XmtpNotifier(client).send_notification(BOB, "ready!") is False

    assert alice_dm.sent == []
    assert client.created_dms == []


@pytest.mark.asyncio
async def test_conversation_is_cached(alice_dm: FakeConversation) -> None:
    """Repeat notices reuse the resolved conversation."""
    client = _client(alice_dm)
    notifier = XmtpNotifier(client)
    await notifier.send_notification(ALICE, "one")
    await notifier.send_notification(ALICE, "two")

    assert alice_dm.sent == ["one", "two"]
    assert client.list_calls == 1
    assert notifier.cached_conversation_count == 1

    notifier.clear_conversation_cache()
    assert notifier.cached_conversation_count == 0
    await notifier.send_notification(ALICE, "three")
    assert client.list_calls == 2


@pytest.mark.asyncio
async def test_concurrent_notifications(alice_dm: FakeConversation) -> None:
    """Parallel sends to the same address all arrive."""
    notifier = XmtpNotifier(_client(alice_dm))
    await asyncio.gather(*(notifier.send_notification(ALICE, f"n{i}") for i in range(5)))

    assert sorted(alice_dm.sent) == [f"n{i}" for i in range(5)]
    assert notifier.cached_conversation_count == 1


@pytest.mark.asyncio
async def test_send_failure_is_raised() -> None:
    """Delivery errors reach the caller."""
    broken = FakeConversation(
        "dm-alice", [member(BOT_INBOX, TEST_ADDRESS), member("alice-inbox", ALICE)], fail_send=True
    )
    with pytest.raises(RuntimeError):
        await XmtpNotifier(_client(broken)).send_notification(ALICE, "ready!")
