"""
Authorization and triage of inbound chat messages.

For every inbound message the engine works out whether everyone in the
conversation is on the allowlist, then routes the message to help,
search, or selection handling based on its content and the sender's
workflow state.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Iterable

from xombi.catalog import CatalogClient
from xombi.errors import SelectionError, UnresolvableAddressError
from xombi.identity import get_ethereum_addresses_of_member
from xombi.media import (
    MOVIE_PREFIX,
    TV_PREFIX,
    request_movie,
    request_tv,
    search_movies,
    search_tv,
)
from xombi.state import RequestTracker, UserStateStore
from xombi.transport import Conversation, MessagingClient
from xombi.types import InboundMessage, WorkflowState

logger = logging.getLogger(__name__)

HELP_MESSAGE = (
    "To search for a movie, send 'movie <search terms>' to me; "
    "for TV shows, send 'tv <search terms>'"
)
STRANGER_MESSAGE = "Sorry, I'm not allowed to talk to strangers."
UNKNOWN_COMMAND_MESSAGE = "Sorry, I don't know what to do with that."
UNEXPECTED_ERROR_MESSAGE = "Sorry, I encountered an unexpected error while processing your message."
UNRESOLVED_USER_MESSAGE = (
    "There is a user mapping configuration issue. Please contact xombi's administrator "
    "for more help.\n\nUntil this is resolved, you will not be able to use xombi."
)


@dataclass
class Authorization:
    """Outcome of checking a conversation's members against the allowlist."""

    allowed: bool
    addresses: list[str] = field(default_factory=list)


class TriageEngine:
    """Authorizes inbound messages and dispatches workflow steps."""

    def __init__(
        self,
        client: MessagingClient,
        catalog: CatalogClient,
        allowed_addresses: Iterable[str],
        user_states: UserStateStore | None = None,
        request_tracker: RequestTracker | None = None,
    ) -> None:
        self._client = client
        self._catalog = catalog
        self._allowed = {addr.lower() for addr in allowed_addresses}
        self.user_states = user_states if user_states is not None else UserStateStore()
        self.request_tracker = request_tracker

    # -- Loop ---------------------------------------------------------------

    async def run(self) -> None:
        """Consume the message stream for as long as it lasts."""
        logger.info("Listening for messages...")
        async for message in self._client.stream_all_messages():
            await self.process_message(message)

    async def process_message(self, message: InboundMessage) -> None:
        """Authorize and triage one message. Never raises."""
        if message.sender_inbox_id.lower() == self._client.inbox_id.lower():
            return
        if not message.is_text or not message.content:
            return

        conversation: Conversation | None = None
        try:
            conversation = await self._client.get_dm_by_inbox_id(message.sender_inbox_id)
            if conversation is None:
                return

            authorization = await self.authorize(conversation)
            if authorization is None:
                return
            if not authorization.allowed:
                await conversation.send(STRANGER_MESSAGE)
                return

            outcomes = await asyncio.gather(
                *(
                    self.triage_current_step(address, message.content, conversation)
                    for address in authorization.addresses
                ),
                return_exceptions=True,
            )
        except Exception as e:
            await self._report(conversation, message, e)
            return

        # Each dispatch fails on its own; report every one of them.
        for outcome in outcomes:
            if isinstance(outcome, Exception):
                await self._report(conversation, message, outcome)
            elif isinstance(outcome, BaseException):
                raise outcome

    async def _report(
        self,
        conversation: Conversation | None,
        message: InboundMessage,
        error: Exception,
    ) -> None:
        if isinstance(error, SelectionError):
            await self._reply(conversation, str(error))
        elif isinstance(error, UnresolvableAddressError):
            logger.warning("Unresolvable identity in conversation: %s", error)
            await self._reply(conversation, UNRESOLVED_USER_MESSAGE)
        else:
            logger.error("Failed to process message %s", message.id, exc_info=error)
            await self._reply(conversation, UNEXPECTED_ERROR_MESSAGE)

    async def _reply(self, conversation: Conversation | None, text: str) -> None:
        if conversation is None:
            return
        try:
            await conversation.send(text)
        except Exception:
            logger.exception("Failed to send reply to conversation %s", conversation.id)

    # -- Authorization ------------------------------------------------------

    async def authorize(self, conversation: Conversation) -> Authorization | None:
        """Check every non-bot member against the allowlist.

        Returns ``None`` when there is nobody besides the bot. Otherwise the
        conversation is allowed only if each member holds at least one
        allowlisted address; ``addresses`` lists every distinct address seen.

        Raises:
            UnresolvableAddressError: If a member has no Ethereum address.
        """
        bot_inbox = self._client.inbox_id.lower()
        members = [m for m in await conversation.members() if m.inbox_id.lower() != bot_inbox]
        if not members:
            return None

        allowed_count = 0
        addresses: dict[str, None] = {}
        for member in members:
            member_addresses = get_ethereum_addresses_of_member(member)
            if not member_addresses:
                raise UnresolvableAddressError(member.inbox_id)
            if any(addr.lower() in self._allowed for addr in member_addresses):
                allowed_count += 1
            for addr in member_addresses:
                addresses.setdefault(addr.lower(), None)

        return Authorization(allowed=allowed_count == len(members), addresses=list(addresses))

    # -- Triage -------------------------------------------------------------

    async def triage_current_step(
        self,
        sender_address: str,
        content: str,
        conversation: Conversation,
    ) -> None:
        sent_content = content.lower()
        if not sent_content:
            return

        if sent_content == "help":
            await conversation.send(HELP_MESSAGE)
        elif sent_content.startswith(MOVIE_PREFIX):
            await search_movies(self._catalog, self.user_states, sender_address, content, conversation)
        elif sent_content.startswith(TV_PREFIX):
            await search_tv(self._catalog, self.user_states, sender_address, content, conversation)
        else:
            state, _ = self.user_states.get(sender_address)
            if state is WorkflowState.AWAITING_MOVIE_SELECTION:
                await request_movie(
                    self._catalog, self.user_states, sender_address, content,
                    conversation, self.request_tracker,
                )
            elif state is WorkflowState.AWAITING_TV_SELECTION:
                await request_tv(
                    self._catalog, self.user_states, sender_address, content,
                    conversation, self.request_tracker,
                )
            else:
                await conversation.send(UNKNOWN_COMMAND_MESSAGE)
