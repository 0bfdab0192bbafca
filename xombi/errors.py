"""
Exception types for xombi.

Everything raised on purpose derives from :class:`XombiError` so the
message loop and the startup path can tell expected failures apart from
bugs.
"""

from __future__ import annotations

from typing import Any


class XombiError(Exception):
    """Base class for all xombi errors."""


class ConfigurationError(XombiError):
    """Missing or malformed configuration; fatal at startup."""


class UnresolvableAddressError(XombiError):
    """An address could not be mapped to a catalog username."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Unable to resolve address {address}")
        self.address = address


class SelectionError(XombiError):
    """A numeric selection did not match the stored search results.

    The message is shown to the user as-is.
    """


class RequestFailedError(XombiError):
    """An HTTP request to a collaborator failed.

    Only the server-provided error field ends up in the message, never
    the full response body.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class CatalogError(XombiError):
    """The catalog backend reported an unexpected error."""


class NoCatalogResponseError(CatalogError):
    """The catalog backend returned no usable response body."""


class ClientCreationError(XombiError):
    """The messaging client could not be created."""


class InstallationLimitError(ClientCreationError):
    """The messaging identity has hit its installation cap.

    Carries ordered, human-readable steps an operator can take to get
    the identity working again.
    """

    def __init__(self, message: str, auto_revoke_available: bool = False) -> None:
        super().__init__(message)
        self.auto_revoke_available = auto_revoke_available

    def resolution_steps(self) -> list[str]:
        steps = [
            "1. Use a different private key (XOMBI_SIGNER_KEY) to create a new XMTP identity",
            "2. Manually revoke existing installations using the XMTP revocation tools",
            "3. Or wait for installations to expire, if your XMTP environment expires them",
        ]
        if self.auto_revoke_available:
            steps.append(
                "4. Set XMTP_REVOKE_ALL_OTHER_INSTALLATIONS=true to revoke all other "
                "installations automatically on startup"
            )
        return steps
