"""
Shared fakes for the messaging network and the catalog.

The fakes implement the transport ABCs in memory and record everything
sent through them, so tests can assert on replies without a gateway.
"""

from __future__ import annotations

from typing import AsyncIterator

import pytest

from xombi.errors import UnresolvableAddressError
from xombi.transport import Conversation, MessagingClient
from xombi.types import (
    AccountIdentifier,
    ContentType,
    ConversationKind,
    ConversationMember,
    InboundMessage,
    MovieSearchResult,
    RequestOutcome,
    TvSearchResult,
)

BOT_INBOX = "bot-inbox"
ALICE = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
BOB = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"

# Well-known throwaway key from the web3 documentation; never fund it.
TEST_PRIVATE_KEY = "0x4c0883a69102937d6231471b5dbb6204fe5129617082792ae468d01a3f362318"
TEST_ADDRESS = "0x2c7536E3605D9C16a7a3D7b1898e529396a65c23"
TEST_ENCRYPTION_KEY = "0x" + "11" * 32


def member(inbox_id: str, *addresses: str, kind: str = "ethereum") -> ConversationMember:
    return ConversationMember(
        inbox_id=inbox_id,
        account_identifiers=[
            AccountIdentifier(identifier=addr, identifier_kind=kind) for addr in addresses
        ],
    )


def text_message(sender_inbox_id: str, content: str, msg_id: str = "m1") -> InboundMessage:
    return InboundMessage(
        id=msg_id,
        conversation_id="c1",
        sender_inbox_id=sender_inbox_id,
        content_type=ContentType(type_id="text"),
        content=content,
    )


class FakeConversation(Conversation):
    def __init__(
        self,
        conv_id: str,
        members: list[ConversationMember],
        kind: ConversationKind = ConversationKind.DM,
        fail_send: bool = False,
    ) -> None:
        self.id = conv_id
        self.kind = kind
        self._members = members
        self.fail_send = fail_send
        self.sent: list[str] = []

    async def members(self) -> list[ConversationMember]:
        return list(self._members)

    async def send(self, text: str) -> None:
        if self.fail_send:
            raise RuntimeError("send failed")
        self.sent.append(text)


class FakeMessagingClient(MessagingClient):
    def __init__(
        self,
        inbox_id: str = BOT_INBOX,
        conversations: list[FakeConversation] | None = None,
        dms: dict[str, FakeConversation] | None = None,
        inbox_lookup: dict[str, str] | None = None,
        messages: list[InboundMessage] | None = None,
    ) -> None:
        self.inbox_id = inbox_id
        self.conversations = conversations or []
        self.dms = dms or {}
        self.inbox_lookup = inbox_lookup or {}
        self.messages = messages or []
        self.created_dms: list[FakeConversation] = []
        self.list_calls = 0
        self.closed = False

    async def list_conversations(self) -> list[Conversation]:
        self.list_calls += 1
        return list(self.conversations)

    async def get_dm_by_inbox_id(self, inbox_id: str) -> Conversation | None:
        return self.dms.get(inbox_id)

    async def new_dm(self, inbox_id: str) -> Conversation:
        conversation = FakeConversation(
            f"dm-{inbox_id}", [member(self.inbox_id), member(inbox_id)]
        )
        self.created_dms.append(conversation)
        return conversation

    async def get_inbox_id_by_identifier(self, identifier: AccountIdentifier) -> str | None:
        return self.inbox_lookup.get(identifier.identifier.lower())

    async def stream_all_messages(self) -> AsyncIterator[InboundMessage]:
        for message in self.messages:
            yield message

    async def close(self) -> None:
        self.closed = True


class FakeCatalog:
    """Stands in for :class:`xombi.catalog.CatalogClient`."""

    def __init__(
        self,
        movies: list[MovieSearchResult] | None = None,
        shows: list[TvSearchResult] | None = None,
        outcome: RequestOutcome = RequestOutcome.SUBMITTED,
        usernames: dict[str, str] | None = None,
    ) -> None:
        self.movies = movies or []
        self.shows = shows or []
        self.outcome = outcome
        self.usernames = usernames
        self.searches: list[tuple[str, str, str]] = []
        self.requests: list[tuple[str, str, str]] = []

    def _check(self, address: str) -> None:
        if self.usernames is not None and address.lower() not in self.usernames:
            raise UnresolvableAddressError(address)

    async def search_movies(self, address: str, search_term: str) -> list[MovieSearchResult]:
        self._check(address)
        self.searches.append(("movie", address, search_term))
        return list(self.movies)

    async def search_tv(self, address: str, search_term: str) -> list[TvSearchResult]:
        self._check(address)
        self.searches.append(("tv", address, search_term))
        return list(self.shows)

    async def request_movie(self, address: str, movie: MovieSearchResult) -> RequestOutcome:
        self._check(address)
        self.requests.append(("movie", address, movie.id))
        return self.outcome

    async def request_tv(self, address: str, show: TvSearchResult) -> RequestOutcome:
        self._check(address)
        self.requests.append(("tv", address, show.id))
        return self.outcome


def movies(count: int) -> list[MovieSearchResult]:
    return [MovieSearchResult(id=str(100 + i), title=f"Movie {i}") for i in range(1, count + 1)]


@pytest.fixture
def alice_dm() -> FakeConversation:
    return FakeConversation("dm-alice", [member(BOT_INBOX, TEST_ADDRESS), member("alice-inbox", ALICE)])


@pytest.fixture
def fake_catalog() -> FakeCatalog:
    return FakeCatalog(movies=movies(2))
