"""
Delivers completion notices to requesters over existing direct
conversations.
"""

from __future__ import annotations

import asyncio
import logging

from xombi.identity import get_ethereum_addresses_of_member
from xombi.transport import Conversation, MessagingClient

logger = logging.getLogger(__name__)


class XmtpNotifier:
    """Sends notifications to wallet addresses.

    Only conversations that already exist are used; the bot never starts
    a conversation to deliver a notice. Resolved conversations are cached
    by lower-cased address for the life of the process.
    """

    def __init__(self, client: MessagingClient) -> None:
        self._client = client
        self._cache: dict[str, Conversation] = {}
        self._lock = asyncio.Lock()

    async def send_notification(self, address: str, message: str) -> bool:
        """Send ``message`` to the direct conversation with ``address``.

        Returns:
            ``True`` once sent, ``False`` if no such conversation exists.

        Raises:
            Exception: Whatever the transport raised while listing
                conversations or sending.
        """
        key = address.lower()
        try:
            async with self._lock:
                conversation = self._cache.get(key)
            if conversation is None:
                conversation = await self._find_conversation(key)
                if conversation is not None:
                    async with self._lock:
                        conversation = self._cache.setdefault(key, conversation)

            if conversation is None:
                logger.info(
                    "No existing conversation found with %s, cannot send notification", address
                )
                return False

            await conversation.send(message)
            logger.info("Notification sent to %s: %s", address, message)
            return True
        except Exception:
            logger.exception("Failed to send notification to %s", address)
            raise

    async def _find_conversation(self, address: str) -> Conversation | None:
        for conversation in await self._client.list_conversations():
            if not conversation.is_direct:
                continue
            for member in await conversation.members():
                if any(a.lower() == address for a in get_ethereum_addresses_of_member(member)):
                    return conversation
        return None

    def clear_conversation_cache(self) -> None:
        self._cache.clear()

    @property
    def cached_conversation_count(self) -> int:
        return len(self._cache)
