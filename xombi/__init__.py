"""
xombi: an XMTP chat front end for Ombi.

Allowlisted wallet holders search Ombi for movies and TV shows over
XMTP direct messages and enqueue requests by replying with a number.
When Ombi later reports a request as available or denied, the original
requester is told in the same conversation.

Example::

    import asyncio
    from xombi import run

    # Reads ALLOW_LIST, OMBI_API_URL, OMBI_API_KEY, XOMBI_SIGNER_KEY,
    # XMTP_ENCRYPTION_KEY and friends from the environment.
    asyncio.run(run())
"""

from xombi.app import initialize_webhook_system, run, send_admin_announcements
from xombi.catalog import CatalogClient, WebhookManager, classify_catalog_error
from xombi.client_factory import ClientResult, XmtpClientFactory
from xombi.errors import (
    CatalogError,
    ClientCreationError,
    ConfigurationError,
    InstallationLimitError,
    NoCatalogResponseError,
    RequestFailedError,
    SelectionError,
    UnresolvableAddressError,
    XombiError,
)
from xombi.gateway import GatewayClient, GatewayTransport
from xombi.notifier import XmtpNotifier
from xombi.state import RequestTracker, SearchResultContext, UserStateStore
from xombi.triage import TriageEngine
from xombi.types import (
    ConversationKind,
    MediaKind,
    MovieSearchResult,
    RequestOutcome,
    TvSearchResult,
    WebhookPayload,
    WorkflowState,
)
from xombi.webhook import WebhookServer

__version__ = "0.3.0"

__all__ = [
    "run",
    "initialize_webhook_system",
    "send_admin_announcements",
    "CatalogClient",
    "WebhookManager",
    "classify_catalog_error",
    "ClientResult",
    "XmtpClientFactory",
    "GatewayClient",
    "GatewayTransport",
    "XmtpNotifier",
    "RequestTracker",
    "SearchResultContext",
    "UserStateStore",
    "TriageEngine",
    "WebhookServer",
    # Types
    "ConversationKind",
    "MediaKind",
    "MovieSearchResult",
    "RequestOutcome",
    "TvSearchResult",
    "WebhookPayload",
    "WorkflowState",
    # Errors
    "XombiError",
    "ConfigurationError",
    "UnresolvableAddressError",
    "SelectionError",
    "RequestFailedError",
    "CatalogError",
    "NoCatalogResponseError",
    "ClientCreationError",
    "InstallationLimitError",
]
