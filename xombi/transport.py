"""
Interfaces to the messaging network.

The bot only needs a handful of operations from the transport: list
conversations and their members, stream inbound messages, and send text.
Anything that implements these ABCs can back the bot; :mod:`xombi.gateway`
is the shipped implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator, Protocol

from xombi.types import (
    AccountIdentifier,
    ConversationKind,
    ConversationMember,
    InboundMessage,
    InboxState,
)


class Conversation(ABC):
    """A conversation the bot is a member of."""

    id: str
    kind: ConversationKind

    @property
    def is_direct(self) -> bool:
        return self.kind == ConversationKind.DM

    @abstractmethod
    async def members(self) -> list[ConversationMember]:
        """Return every member, the bot included."""

    @abstractmethod
    async def send(self, text: str) -> None:
        """Send a text message to the conversation."""


class MessagingClient(ABC):
    """A registered installation of the bot's messaging identity."""

    inbox_id: str

    @abstractmethod
    async def list_conversations(self) -> list[Conversation]:
        ...

    @abstractmethod
    async def get_dm_by_inbox_id(self, inbox_id: str) -> Conversation | None:
        """Return the direct conversation with ``inbox_id``, if any."""

    @abstractmethod
    async def new_dm(self, inbox_id: str) -> Conversation:
        ...

    @abstractmethod
    async def get_inbox_id_by_identifier(self, identifier: AccountIdentifier) -> str | None:
        ...

    @abstractmethod
    def stream_all_messages(self) -> AsyncIterator[InboundMessage]:
        """Yield every message received in any conversation, forever."""

    async def close(self) -> None:
        return None


class Signer(Protocol):
    """What the transport needs from the bot's wallet."""

    @property
    def identifier(self) -> AccountIdentifier: ...

    def sign_message_hex(self, message: str | bytes) -> str: ...


class IdentityTransport(ABC):
    """Identity-level operations used while building a client."""

    @abstractmethod
    async def create_client(
        self,
        signer: Signer,
        encryption_key: bytes,
        environment: str,
    ) -> MessagingClient:
        """Register (or resume) an installation and return a client."""

    @abstractmethod
    async def inbox_state(self, inbox_ids: list[str], environment: str) -> list[InboxState]:
        ...

    @abstractmethod
    async def revoke_installations(
        self,
        signer: Signer,
        inbox_id: str,
        installation_ids: list[str],
        environment: str,
    ) -> None:
        ...
