"""
Messaging transport backed by an XMTP gateway sidecar.

The sidecar owns the protocol's cryptography and local database; this
module talks to it over REST (``httpx``) for identity, conversation and
send operations, and over a WebSocket (``websockets``) for the inbound
message stream.

Usage::

    transport = GatewayTransport("http://xmtp-gateway:5555")
    client = await transport.create_client(signer, encryption_key, "dev")
    async for message in client.stream_all_messages():
        ...
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncIterator
from urllib.parse import quote as url_quote

import websockets

from xombi.errors import RequestFailedError
from xombi.http import HttpClient
from xombi.transport import Conversation, IdentityTransport, MessagingClient, Signer
from xombi.types import (
    AccountIdentifier,
    ConversationInfo,
    ConversationMember,
    InboundMessage,
    InboxState,
    RegistrationResult,
    SignatureRequest,
)

logger = logging.getLogger(__name__)


def _decode_frame(raw: str | bytes) -> InboundMessage | None:
    """Decode a stream frame; anything but a message frame yields None."""
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        logger.debug("Ignoring non-JSON stream frame")
        return None
    if not isinstance(data, dict) or data.get("type") != "message":
        return None
    try:
        return InboundMessage(**data.get("message", {}))
    except Exception:
        logger.debug("Ignoring malformed message frame")
        return None


# ============================================================
#  Conversations
# ============================================================


class GatewayConversation(Conversation):
    def __init__(self, http: HttpClient, info: ConversationInfo) -> None:
        self._http = http
        self.id = info.id
        self.kind = info.kind
        self.peer_inbox_id = info.peer_inbox_id

    async def members(self) -> list[ConversationMember]:
        data = await self._http.request(
            "GET", f"/v1/conversations/{url_quote(self.id, safe='')}/members"
        )
        return [ConversationMember(**m) for m in (data or {}).get("members", [])]

    async def send(self, text: str) -> None:
        await self._http.request(
            "POST",
            f"/v1/conversations/{url_quote(self.id, safe='')}/messages",
            {"contentType": "text", "content": text},
        )

    def __repr__(self) -> str:
        return f"GatewayConversation(id={self.id!r}, kind={self.kind.value})"


# ============================================================
#  Client
# ============================================================


class GatewayClient(MessagingClient):
    """A registered installation, authenticated to the gateway."""

    def __init__(
        self,
        gateway_url: str,
        registration: RegistrationResult,
        max_stream_retries: int = 5,
    ) -> None:
        self._gateway_url = gateway_url.rstrip("/")
        self._http = HttpClient(
            self._gateway_url,
            headers={"Authorization": f"Bearer {registration.token}"},
        )
        self.inbox_id = registration.inbox_id
        self.installation_id = registration.installation_id
        self._max_stream_retries = max_stream_retries

    def _conversation(self, data: dict[str, Any]) -> GatewayConversation:
        return GatewayConversation(self._http, ConversationInfo(**data))

    async def list_conversations(self) -> list[Conversation]:
        data = await self._http.request("GET", "/v1/conversations")
        return [self._conversation(c) for c in (data or {}).get("conversations", [])]

    async def get_dm_by_inbox_id(self, inbox_id: str) -> Conversation | None:
        try:
            data = await self._http.request(
                "GET", f"/v1/conversations/dm/{url_quote(inbox_id, safe='')}"
            )
        except RequestFailedError as e:
            if e.status_code == 404:
                return None
            raise
        return self._conversation(data) if data else None

    async def new_dm(self, inbox_id: str) -> Conversation:
        data = await self._http.request("POST", "/v1/conversations/dm", {"inboxId": inbox_id})
        return self._conversation(data)

    async def get_inbox_id_by_identifier(self, identifier: AccountIdentifier) -> str | None:
        data = await self._http.request(
            "GET",
            f"/v1/inboxes/lookup?identifier={url_quote(identifier.identifier, safe='')}"
            f"&identifierKind={url_quote(identifier.identifier_kind, safe='')}",
        )
        return (data or {}).get("inboxId")

    async def stream_all_messages(self) -> AsyncIterator[InboundMessage]:
        """Yield inbound messages, reconnecting with backoff on drops.

        Gives up with the last connection error after
        ``max_stream_retries`` consecutive failures.
        """
        failures = 0
        while True:
            try:
                ticket_data = await self._http.request("POST", "/v1/ws/ticket")
                ticket = (ticket_data or {}).get("ticket", "")
                if not ticket:
                    raise RequestFailedError("Gateway returned an empty stream ticket")

                ws_base = self._gateway_url.replace("http://", "ws://").replace(
                    "https://", "wss://"
                )
                ws_url = f"{ws_base}/ws/messages?ticket={url_quote(ticket, safe='')}"
                async with websockets.connect(ws_url) as ws:
                    logger.debug("Message stream connected")
                    failures = 0
                    async for raw in ws:
                        message = _decode_frame(raw)
                        if message is not None:
                            yield message
                logger.warning("Message stream closed by gateway; reconnecting")
                await asyncio.sleep(1)
            except asyncio.CancelledError:
                raise
            except Exception:
                failures += 1
                if failures > self._max_stream_retries:
                    logger.error("Message stream failed %d times in a row; giving up", failures)
                    raise
                delay = min(2 * (2 ** (failures - 1)), 60)
                logger.warning(
                    "Message stream failed (attempt %d/%d); retrying in %ds",
                    failures, self._max_stream_retries, delay,
                    exc_info=True,
                )
                await asyncio.sleep(delay)

    async def close(self) -> None:
        await self._http.close()


# ============================================================
#  Identity
# ============================================================


class GatewayTransport(IdentityTransport):
    """Identity operations: register installations, inspect and revoke them."""

    def __init__(self, gateway_url: str, api_key: str | None = None) -> None:
        self._gateway_url = gateway_url.rstrip("/")
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._http = HttpClient(self._gateway_url, headers=headers)

    async def create_client(
        self,
        signer: Signer,
        encryption_key: bytes,
        environment: str,
    ) -> GatewayClient:
        identifier = signer.identifier
        challenge_data = await self._http.request(
            "POST",
            "/v1/installations/challenge",
            {
                "identifier": identifier.identifier,
                "identifierKind": identifier.identifier_kind,
                "env": environment,
            },
        )
        challenge = SignatureRequest(**challenge_data)

        data = await self._http.request(
            "POST",
            "/v1/installations",
            {
                "identifier": identifier.identifier,
                "identifierKind": identifier.identifier_kind,
                "env": environment,
                "inboxId": challenge.inbox_id,
                "signature": signer.sign_message_hex(challenge.signature_text),
                "dbEncryptionKey": "0x" + encryption_key.hex(),
            },
        )
        registration = RegistrationResult(**data)
        logger.info(
            "Registered installation %s for inbox %s",
            registration.installation_id,
            registration.inbox_id,
        )
        return GatewayClient(self._gateway_url, registration)

    async def inbox_state(self, inbox_ids: list[str], environment: str) -> list[InboxState]:
        data = await self._http.request(
            "POST", "/v1/inboxes/state", {"inboxIds": inbox_ids, "env": environment}
        )
        return [InboxState(**s) for s in (data or {}).get("inboxes", [])]

    async def revoke_installations(
        self,
        signer: Signer,
        inbox_id: str,
        installation_ids: list[str],
        environment: str,
    ) -> None:
        path = f"/v1/inboxes/{url_quote(inbox_id, safe='')}/revocations"
        challenge_data = await self._http.request(
            "POST",
            f"{path}/challenge",
            {"installationIds": installation_ids, "env": environment},
        )
        challenge = SignatureRequest(**challenge_data)
        await self._http.request(
            "POST",
            path,
            {
                "installationIds": installation_ids,
                "env": environment,
                "signature": signer.sign_message_hex(challenge.signature_text),
            },
        )

    async def close(self) -> None:
        await self._http.close()
