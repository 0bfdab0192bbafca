"""
Builds the bot's messaging client.

The messaging network caps how many installations one identity may
register. Every fresh container start registers a new one, so a bot
restarted often enough in development locks itself out. When that
happens the factory either explains how to recover
(:class:`~xombi.errors.InstallationLimitError`) or, if allowed to,
revokes the identity's installations and tries once more.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from eth_account import Account
from eth_account.signers.local import LocalAccount
from eth_utils import decode_hex, is_hex

from xombi.config import XMTP_ENVIRONMENTS, XmtpConfig
from xombi.errors import ClientCreationError, ConfigurationError, InstallationLimitError
from xombi.identity import EoaSigner
from xombi.transport import IdentityTransport, MessagingClient

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_BYTES = 32

_INBOX_ID_RE = re.compile(r"InboxID\s+([0-9a-fA-F]+)")


@dataclass
class ClientResult:
    client: MessagingClient
    account: LocalAccount
    environment: str

    @property
    def address(self) -> str:
        return self.account.address


def validate_config(config: XmtpConfig) -> None:
    """Check keys and environment before any network call.

    Raises:
        ConfigurationError: Describing the first problem found.
    """
    if not config.signer_key:
        raise ConfigurationError("invalid Xombi signer key; must be of type `0x${string}`")
    try:
        Account.from_key(config.signer_key)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(
            "invalid Xombi signer key; must be a 32-byte hex private key"
        ) from e

    if not config.encryption_key:
        raise ConfigurationError("invalid XMTP encryption key; must be of type `0x${string}`")
    if not is_hex(config.encryption_key) or len(decode_hex(config.encryption_key)) != ENCRYPTION_KEY_BYTES:
        raise ConfigurationError(
            f"invalid XMTP encryption key; must be {ENCRYPTION_KEY_BYTES} hex-encoded bytes"
        )

    if config.environment not in XMTP_ENVIRONMENTS:
        raise ConfigurationError(f"invalid XMTP_ENV: {config.environment}")


def is_installation_limit_error(error: BaseException | str) -> bool:
    """Whether a transport error means the installation cap was reached.

    Matches on message text; this is the only place that knows it.
    """
    text = str(error).lower()
    return "installation" in text and "registered" in text


def extract_inbox_id(error: BaseException | str) -> str | None:
    match = _INBOX_ID_RE.search(str(error))
    return match.group(1) if match else None


class XmtpClientFactory:
    """Creates messaging clients, recovering from the installation cap."""

    def __init__(self, transport: IdentityTransport) -> None:
        self._transport = transport

    async def create_client(self, config: XmtpConfig) -> ClientResult:
        """Create a ready client for the configured identity.

        Raises:
            ConfigurationError: If the configuration is invalid.
            InstallationLimitError: If the cap is reached and auto-revoke
                is disabled.
            ClientCreationError: For any other creation failure, including
                a failed retry after revoking.
        """
        validate_config(config)

        account = Account.from_key(config.signer_key)
        signer = EoaSigner(account, config.environment)
        encryption_key = decode_hex(config.encryption_key)

        try:
            client = await self._transport.create_client(signer, encryption_key, config.environment)
        except Exception as e:
            if not is_installation_limit_error(e):
                raise ClientCreationError(f"XMTP client creation failed: {e}") from e
            if not config.auto_revoke_installations:
                raise InstallationLimitError(str(e), auto_revoke_available=False) from e

            logger.warning("XMTP installation limit reached; revoking existing installations")
            await self._revoke_all_installations(signer, e, config.environment)

            try:
                client = await self._transport.create_client(
                    signer, encryption_key, config.environment
                )
            except Exception as retry_error:
                raise ClientCreationError(
                    f"XMTP client creation failed after revoking installations: {retry_error}"
                ) from retry_error

        return ClientResult(client=client, account=account, environment=config.environment)

    async def _revoke_all_installations(
        self,
        signer: EoaSigner,
        error: BaseException,
        environment: str,
    ) -> None:
        inbox_id = extract_inbox_id(error)
        if not inbox_id:
            raise ClientCreationError(
                f"Installation limit reached but no inbox ID found in the error: {error}"
            ) from error

        states = await self._transport.inbox_state([inbox_id], environment)
        installation_ids = [inst.id for state in states for inst in state.installations]
        if not installation_ids:
            logger.warning("No installations found for inbox %s", inbox_id)
            return

        await self._transport.revoke_installations(signer, inbox_id, installation_ids, environment)
        logger.info("Revoked %d installations for inbox %s", len(installation_ids), inbox_id)
