"""
Startup orchestration.

Order matters: the messaging client is built first, then the webhook
system (listener plus registration with Ombi), then admins are told the
bot is up, and only then does the message loop start. A failure at any
step aborts the ones after it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping

from xombi.catalog import CatalogClient, WebhookManager
from xombi.client_factory import XmtpClientFactory
from xombi.config import (
    DEFAULT_WEBHOOK_PORT,
    WebhookConfig,
    parse_app_config,
    parse_catalog_config,
    parse_webhook_config,
    parse_xmtp_config,
    validate_webhook_config,
)
from xombi.errors import XombiError
from xombi.gateway import GatewayTransport
from xombi.identity import get_ethereum_addresses_of_member
from xombi.notifier import XmtpNotifier
from xombi.state import RequestTracker
from xombi.transport import Conversation, IdentityTransport, MessagingClient
from xombi.triage import TriageEngine
from xombi.types import AccountIdentifier, IdentifierKind
from xombi.webhook import WebhookServer, build_webhook_url

logger = logging.getLogger(__name__)

STARTUP_ANNOUNCEMENT = "🤖 xombi is now online and ready!"


# ============================================================
#  Admin announcements
# ============================================================


async def _find_admin_dm(
    client: MessagingClient,
    conversations: list[Conversation],
    admin_address: str,
) -> Conversation | None:
    admin = admin_address.lower()
    for conversation in conversations:
        members = await conversation.members()
        # Only a 1:1 conversation between the bot and this admin will do.
        if len(members) != 2:
            continue
        has_bot = any(m.inbox_id == client.inbox_id for m in members)
        has_admin = any(
            addr.lower() == admin
            for m in members
            if m.inbox_id != client.inbox_id
            for addr in get_ethereum_addresses_of_member(m)
        )
        if has_bot and has_admin:
            return conversation
    return None


async def send_admin_announcements(client: MessagingClient, admin_addresses: Iterable[str]) -> None:
    """Tell each admin the bot is online. Failures are logged per admin."""
    admins = list(admin_addresses)
    if not admins:
        return

    logger.info("Sending startup announcements to admin addresses...")
    conversations = await client.list_conversations()
    logger.debug(
        "Evaluating %d existing conversations for %d admin(s)", len(conversations), len(admins)
    )

    for admin_address in admins:
        try:
            conversation = await _find_admin_dm(client, conversations, admin_address)
            if conversation is None:
                logger.debug(
                    "No existing 1-on-1 conversation with admin %s; creating one", admin_address
                )
                inbox_id = await client.get_inbox_id_by_identifier(
                    AccountIdentifier(
                        identifier=admin_address,
                        identifier_kind=IdentifierKind.ETHEREUM.value,
                    )
                )
                if not inbox_id:
                    logger.error(
                        "Could not find inbox ID for admin %s; the address may not be "
                        "registered on XMTP",
                        admin_address,
                    )
                    continue
                conversation = await client.new_dm(inbox_id)
                logger.info("New conversation created with admin: %s", admin_address)

            await conversation.send(STARTUP_ANNOUNCEMENT)
            logger.info("Startup announcement sent to admin: %s", admin_address)
        except Exception:
            logger.exception("Failed to send startup announcement to admin %s", admin_address)


# ============================================================
#  Webhook system
# ============================================================


@dataclass
class WebhookSystem:
    """Everything the webhook notification path needs at runtime."""

    request_tracker: RequestTracker
    webhook_server: WebhookServer
    webhook_manager: WebhookManager
    notifier: XmtpNotifier
    webhook_url: str

    async def close(self) -> None:
        await self.webhook_server.stop()
        await self.webhook_manager.close()


async def initialize_webhook_system(
    config: WebhookConfig,
    client: MessagingClient,
) -> WebhookSystem | None:
    """Start the listener and register it with Ombi.

    Returns:
        The running components, or ``None`` when webhooks are disabled.

    Raises:
        ConfigurationError: If required webhook settings are missing.
        XombiError: If Ombi does not accept the registration.
    """
    if not config.enabled:
        logger.info("Webhook notifications disabled")
        return None

    validate_webhook_config(config)
    logger.info("Webhook notifications enabled - setting up webhook system")

    request_tracker = RequestTracker()
    webhook_server = WebhookServer(
        request_tracker,
        config.application_key or "",
        config.allowlisted_ips,
        trust_proxy=config.trust_proxy,
        debug_enabled=config.debug_enabled,
    )
    webhook_manager = WebhookManager(config.ombi_api_url, config.ombi_api_key or "")
    notifier = XmtpNotifier(client)
    webhook_server.set_notification_handler(notifier.send_notification)

    port = config.port or DEFAULT_WEBHOOK_PORT
    await webhook_server.start(port)

    try:
        if config.base_url:
            webhook_url = f"{config.base_url}/webhook"
            logger.info("Using custom webhook base URL: %s", config.base_url)
        else:
            webhook_url = build_webhook_url(port)

        logger.info("Registering webhook URL: %s", webhook_url)
        if not await webhook_manager.register_webhook(webhook_url, config.application_key):
            raise XombiError("Failed to register webhook with Ombi")
        logger.info("Webhook successfully registered with Ombi")
    except Exception:
        await webhook_server.stop()
        await webhook_manager.close()
        raise

    return WebhookSystem(
        request_tracker=request_tracker,
        webhook_server=webhook_server,
        webhook_manager=webhook_manager,
        notifier=notifier,
        webhook_url=webhook_url,
    )


# ============================================================
#  Entry
# ============================================================


async def run(
    environ: Mapping[str, str] | None = None,
    transport: IdentityTransport | None = None,
) -> None:
    """Wire everything together and consume messages until the stream ends.

    Args:
        environ: Configuration source; defaults to ``os.environ``.
        transport: Messaging identity transport; defaults to the gateway
            named by ``XMTP_GATEWAY_URL``.
    """
    app_config = parse_app_config(environ)
    logger.info("xombi starting")
    logger.info("Allowing messages from addresses: %s", app_config.allowed_addresses)

    catalog_config = parse_catalog_config(environ)
    xmtp_config = parse_xmtp_config(environ)
    webhook_config = parse_webhook_config(environ)

    owned_transport = transport is None
    if transport is None:
        transport = GatewayTransport(xmtp_config.gateway_url, xmtp_config.gateway_api_key)
    catalog = CatalogClient(
        catalog_config.api_url,
        catalog_config.api_key,
        catalog_config.usernames,
        debug=catalog_config.debug_search,
    )

    try:
        result = await XmtpClientFactory(transport).create_client(xmtp_config)
        logger.info(
            "Agent initialized on %s\nSend a message on http://xmtp.chat/dm/%s?env=%s",
            result.address, result.address, result.environment,
        )

        webhook_system: WebhookSystem | None = None
        try:
            webhook_system = await initialize_webhook_system(webhook_config, result.client)
            await send_admin_announcements(result.client, app_config.admin_addresses)

            engine = TriageEngine(
                result.client,
                catalog,
                app_config.allowed_addresses,
                request_tracker=webhook_system.request_tracker if webhook_system else None,
            )
            await engine.run()
        finally:
            if webhook_system is not None:
                await webhook_system.close()
            await result.client.close()
    finally:
        await catalog.close()
        if owned_transport and isinstance(transport, GatewayTransport):
            await transport.close()

