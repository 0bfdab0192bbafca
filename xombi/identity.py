"""
Wallet identity helpers: resolving a member's Ethereum addresses and
signing on behalf of the bot's externally-owned account.
"""

from __future__ import annotations

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount

from xombi.types import AccountIdentifier, ConversationMember, IdentifierKind

MAINNET_CHAIN_ID = 1
SEPOLIA_CHAIN_ID = 11155111


def get_ethereum_addresses_of_member(member: ConversationMember) -> list[str]:
    """Return the Ethereum addresses a conversation member controls.

    Identifiers of other kinds and empty entries are dropped. An empty
    result means the member cannot be evaluated against the allowlist.
    """
    return [
        ident.identifier
        for ident in member.account_identifiers
        if ident.identifier_kind.lower() == IdentifierKind.ETHEREUM.value
        and ident.identifier
        and ident.identifier.strip()
    ]


class EoaSigner:
    """Signs identity actions with the bot's private key."""

    def __init__(self, account: LocalAccount, environment: str = "production") -> None:
        self._account = account
        self.chain_id = MAINNET_CHAIN_ID if environment == "production" else SEPOLIA_CHAIN_ID

    @classmethod
    def from_key(cls, private_key: str, environment: str = "production") -> "EoaSigner":
        return cls(Account.from_key(private_key), environment)

    @property
    def address(self) -> str:
        return self._account.address

    @property
    def identifier(self) -> AccountIdentifier:
        return AccountIdentifier(
            identifier=self._account.address.lower(),
            identifier_kind=IdentifierKind.ETHEREUM.value,
        )

    def sign_message(self, message: str | bytes) -> bytes:
        """EIP-191 personal-sign ``message`` and return the raw signature."""
        if isinstance(message, str):
            signable = encode_defunct(text=message)
        else:
            signable = encode_defunct(primitive=message)
        signed = self._account.sign_message(signable)
        return bytes(signed.signature)

    def sign_message_hex(self, message: str | bytes) -> str:
        return "0x" + self.sign_message(message).hex()
