"""
HTTP listener for Ombi's completion callbacks.

Ombi posts to ``/webhook`` when a request becomes available, is denied,
or gains new episodes. Every call must come from an allowlisted address
and carry the shared application token; accepted calls are matched to
the original requester through the :class:`~xombi.state.RequestTracker`
and relayed over chat.
"""

from __future__ import annotations

import asyncio
import hmac
import ipaddress
import json
import logging
import socket
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Mapping, Union

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from xombi.config import DEFAULT_WEBHOOK_PORT
from xombi.state import RequestTracker
from xombi.types import MediaKind, WebhookPayload

logger = logging.getLogger(__name__)

NotificationHandler = Callable[[str, str], Awaitable[bool]]

STATUS_AVAILABLE = "available"
STATUS_DENIED = "denied"
STATUS_PARTIALLY_AVAILABLE = "partially available"

_MEDIA_LABELS = {MediaKind.MOVIE: "movie", MediaKind.TV: "TV show"}
_TV_TYPES = {"tv", "show", "tv show", "tvshow"}

_IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
_IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]


# ============================================================
#  Security helpers
# ============================================================


def _normalize_address(address: _IPAddress) -> _IPAddress:
    if isinstance(address, ipaddress.IPv6Address) and address.ipv4_mapped is not None:
        return address.ipv4_mapped
    return address


def _normalize_network(network: _IPNetwork) -> _IPNetwork:
    if isinstance(network, ipaddress.IPv6Network) and network.prefixlen >= 96:
        mapped = network.network_address.ipv4_mapped
        if mapped is not None:
            return ipaddress.IPv4Network(f"{mapped}/{network.prefixlen - 96}")
    return network


class IpAllowlist:
    """Exact addresses and CIDR blocks allowed to call the webhook.

    IPv4-mapped IPv6 forms (``::ffff:a.b.c.d``) are folded to plain IPv4 on
    both sides, so either spelling matches the other.
    """

    def __init__(self, entries: Iterable[str]) -> None:
        self._networks: list[_IPNetwork] = []
        for entry in entries:
            entry = entry.strip()
            if not entry:
                continue
            try:
                network = ipaddress.ip_network(entry, strict=False)
            except ValueError:
                logger.warning("Ignoring invalid webhook allowlist entry: %s", entry)
                continue
            self._networks.append(_normalize_network(network))

    def __len__(self) -> int:
        return len(self._networks)

    def allows(self, host: str | None) -> bool:
        if not host:
            return False
        try:
            address = _normalize_address(ipaddress.ip_address(host))
        except ValueError:
            return False
        return any(address in network for network in self._networks)


def redact_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Copy ``headers`` with the credentials masked, for debug logging."""
    redacted = {key.lower(): value for key, value in headers.items()}
    if redacted.get("authorization"):
        redacted["authorization"] = "Bearer ***CENSORED***"
    if redacted.get("access-token"):
        redacted["access-token"] = "***CENSORED***"
    return redacted


def extract_token(headers: Mapping[str, str]) -> str | None:
    """The shared secret from ``Authorization: Bearer`` or ``Access-Token``."""
    authorization = headers.get("authorization") or ""
    if authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]
        if token:
            return token
    return headers.get("access-token") or None


def media_kind_of(payload_type: str | None) -> MediaKind | None:
    kind = (payload_type or "").strip().lower()
    if kind == "movie":
        return MediaKind.MOVIE
    if kind in _TV_TYPES:
        return MediaKind.TV
    return None


# ============================================================
#  Messages
# ============================================================


def available_message(title: str, kind: MediaKind) -> str:
    return f'🎉 Your {_MEDIA_LABELS[kind]} "{title}" is now available!'


def denied_message(title: str, reason: str | None = None) -> str:
    suffix = f" Reason: {reason}" if reason else ""
    return f'❌ Your request for "{title}" has been denied.{suffix}'


def partially_available_message(payload: WebhookPayload, title: str) -> str:
    details = []
    if payload.partially_available_season_number is not None:
        details.append(f"Season {payload.partially_available_season_number}")
    if payload.partially_available_episode_numbers:
        details.append(f"episodes {payload.partially_available_episode_numbers}")
    elif payload.partially_available_episode_count:
        details.append(f"{payload.partially_available_episode_count} episodes")

    message = f'📺 New episodes of "{title}" are now available!'
    if details:
        message += f" ({', '.join(details)})"
    return message


# ============================================================
#  Server
# ============================================================


class WebhookServer:
    """FastAPI app receiving Ombi notifications, served by uvicorn.

    Args:
        request_tracker: Shared tracker written by the chat workflow.
        application_token: Secret Ombi sends with every call.
        allowlisted_ips: Addresses or CIDR blocks Ombi may call from.
        trust_proxy: Take the client address from the last
            ``X-Forwarded-For`` hop instead of the socket.
        debug_enabled: Log (redacted) headers and bodies of every call.
    """

    def __init__(
        self,
        request_tracker: RequestTracker,
        application_token: str,
        allowlisted_ips: Iterable[str],
        trust_proxy: bool = False,
        debug_enabled: bool = False,
    ) -> None:
        self._tracker = request_tracker
        self._token = application_token
        self._allowlist = IpAllowlist(allowlisted_ips)
        self._trust_proxy = trust_proxy
        self._debug = debug_enabled
        self._notification_handler: NotificationHandler | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None

        self.app = FastAPI(title="xombi webhook", docs_url=None, redoc_url=None)
        self.app.add_api_route("/webhook", self.handle_webhook, methods=["POST"])
        self.app.add_api_route("/health", self.health, methods=["GET"])

    def set_notification_handler(self, handler: NotificationHandler) -> None:
        self._notification_handler = handler

    # -- Lifecycle ----------------------------------------------------------

    async def start(self, port: int = DEFAULT_WEBHOOK_PORT, host: str = "0.0.0.0") -> None:
        """Serve on ``host:port`` in a background task; returns once bound."""
        config = uvicorn.Config(self.app, host=host, port=port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve())

        while not self._server.started:
            if self._serve_task.done():
                self._serve_task.result()
                raise RuntimeError(f"Webhook server exited before binding port {port}")
            await asyncio.sleep(0.05)
        logger.info("Webhook server running on port %d", port)

    async def stop(self) -> None:
        if self._server is None or self._serve_task is None:
            return
        self._server.should_exit = True
        await self._serve_task
        self._server = None
        self._serve_task = None
        logger.info("Webhook server stopped")

    # -- Routes -------------------------------------------------------------

    async def health(self) -> dict[str, str]:
        return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}

    async def handle_webhook(self, request: Request) -> JSONResponse:
        raw_body = await request.body()

        if self._debug:
            logger.info("=== WEBHOOK DEBUG ===")
            logger.info("Headers: %s", json.dumps(redact_headers(request.headers), indent=2))
            logger.info("Body: %s", raw_body.decode("utf-8", errors="replace"))

        client_ip = self.client_ip(request)
        if not self.is_authorized(client_ip, request.headers):
            logger.warning("Rejected unauthorized webhook request from: %s", client_ip)
            return JSONResponse({"error": "Forbidden"}, status_code=403)

        try:
            data: Any = json.loads(raw_body)
            payload = WebhookPayload.model_validate(data)
        except (ValueError, ValidationError) as e:
            logger.warning("Rejected malformed webhook payload: %s", e)
            return JSONResponse({"error": "Invalid payload"}, status_code=400)

        try:
            await self.process_payload(payload)
        except Exception:
            logger.exception("Error handling webhook")
            return JSONResponse({"error": "Internal server error"}, status_code=500)

        return JSONResponse({"received": True})

    # -- Security gate ------------------------------------------------------

    def client_ip(self, request: Request) -> str | None:
        if self._trust_proxy:
            forwarded = request.headers.get("x-forwarded-for", "")
            hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
            if hops:
                return hops[-1]
        return request.client.host if request.client else None

    def is_authorized(self, client_ip: str | None, headers: Mapping[str, str]) -> bool:
        if not self._allowlist.allows(client_ip):
            return False
        token = extract_token(headers)
        if not token or not self._token:
            return False
        return hmac.compare_digest(token.encode("utf-8"), self._token.encode("utf-8"))

    # -- Classification -----------------------------------------------------

    async def process_payload(self, payload: WebhookPayload) -> None:
        if (payload.notification_type or "").lower() == "test":
            logger.info("🎉 Webhook test notification received successfully!")
            return

        status = " ".join((payload.request_status or "").lower().split())
        if status not in (STATUS_AVAILABLE, STATUS_DENIED, STATUS_PARTIALLY_AVAILABLE):
            logger.debug("Ignoring webhook with request status %r", payload.request_status)
            return

        kind = media_kind_of(payload.type)
        if payload.provider_id in (None, "") or kind is None:
            logger.info(
                "Ignoring %s webhook without provider id or media type (type=%r)",
                status, payload.type,
            )
            return

        await self._notify_requester(payload, str(payload.provider_id), kind, status)

    async def _notify_requester(
        self,
        payload: WebhookPayload,
        item_id: str,
        kind: MediaKind,
        status: str,
    ) -> None:
        requester = self._tracker.get_requester(item_id, kind)
        if requester is None:
            logger.info("No requester found for %s %s", kind.value, item_id)
            return
        if self._notification_handler is None:
            logger.warning("No notification handler set; dropping %s notice for %s", status, item_id)
            return

        title = payload.title or "Unknown"
        if status == STATUS_AVAILABLE:
            message = available_message(title, kind)
        elif status == STATUS_DENIED:
            message = denied_message(title, payload.deny_reason)
        else:
            message = partially_available_message(payload, title)

        try:
            delivered = await self._notification_handler(requester, message)
        except Exception:
            logger.exception("Failed to send notification to %s", requester)
            return

        if status != STATUS_PARTIALLY_AVAILABLE:
            self._tracker.remove(item_id, kind)
        if delivered:
            logger.info("Sent notification to %s for %s (%s)", requester, title, status)
        else:
            logger.warning(
                "Dropped undeliverable %s notice for %s: no conversation with %s",
                status, title, requester,
            )


# ============================================================
#  Network
# ============================================================


def get_local_ip_address() -> str | None:
    """Best guess at this host's outward-facing IPv4 address."""
    probe = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # UDP connect only selects a route; nothing is sent.
        probe.connect(("10.255.255.255", 1))
        address = probe.getsockname()[0]
    except OSError:
        return None
    finally:
        probe.close()
    if not address or address.startswith("127.") or address == "0.0.0.0":
        return None
    return address


def build_webhook_url(port: int = DEFAULT_WEBHOOK_PORT) -> str:
    local_ip = get_local_ip_address()
    if not local_ip:
        raise RuntimeError("Could not determine local IP address for webhook URL")
    return f"http://{local_ip}:{port}/webhook"
