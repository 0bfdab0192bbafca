"""
Environment-driven configuration.

Values come from the process environment, optionally seeded from a
``.env`` file. Parsers take an explicit mapping so tests never have to
touch ``os.environ``.
"""

from __future__ import annotations

import os
from typing import Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from xombi.errors import ConfigurationError

XMTP_ENVIRONMENTS = ("local", "dev", "production")
DEFAULT_WEBHOOK_PORT = 3000
DEFAULT_ALLOWLISTED_IPS = ["127.0.0.1", "::1", "::ffff:127.0.0.1"]
DEFAULT_OMBI_API_URL = "http://localhost:5000"
DEFAULT_GATEWAY_URL = "http://localhost:5555"
USERNAME_PREFIX = "USERNAME_"


def initialize_environment(dotenv_path: str | None = None) -> None:
    """Load ``.env`` into the process environment without overriding it."""
    load_dotenv(dotenv_path)


def _env(environ: Mapping[str, str] | None) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


def _address_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [addr.strip().lower() for addr in value.split(",") if addr.strip()]


# ============================================================
#  Models
# ============================================================


class AppConfig(BaseModel):
    """Who may talk to the bot and who gets startup announcements."""

    allowed_addresses: list[str] = []
    admin_addresses: list[str] = []


class CatalogConfig(BaseModel):
    api_url: str
    api_key: str
    usernames: dict[str, str] = Field(default_factory=dict)
    debug_search: bool = False


class XmtpConfig(BaseModel):
    """Messaging identity and gateway settings."""

    signer_key: str = ""
    encryption_key: str = ""
    environment: str = "production"
    auto_revoke_installations: bool = False
    gateway_url: str = DEFAULT_GATEWAY_URL
    gateway_api_key: str | None = None


class WebhookConfig(BaseModel):
    enabled: bool = False
    application_key: str | None = None
    base_url: str | None = None
    allowlisted_ips: list[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWLISTED_IPS))
    ombi_api_url: str = DEFAULT_OMBI_API_URL
    ombi_api_key: str | None = None
    port: int = DEFAULT_WEBHOOK_PORT
    debug_enabled: bool = False
    trust_proxy: bool = False


# ============================================================
#  Parsers
# ============================================================


def parse_app_config(environ: Mapping[str, str] | None = None) -> AppConfig:
    env = _env(environ)
    return AppConfig(
        allowed_addresses=_address_list(env.get("ALLOW_LIST")),
        admin_addresses=_address_list(env.get("ADMIN_ADDRESSES")),
    )


def parse_usernames(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Collect ``USERNAME_<address>`` entries, keyed by lower-cased address."""
    env = _env(environ)
    return {
        key[len(USERNAME_PREFIX):].lower(): value
        for key, value in env.items()
        if key.startswith(USERNAME_PREFIX) and value
    }


def parse_catalog_config(environ: Mapping[str, str] | None = None) -> CatalogConfig:
    env = _env(environ)
    api_url = env.get("OMBI_API_URL")
    if not api_url:
        raise ConfigurationError("no Ombi API URL found; set OMBI_API_URL")
    api_key = env.get("OMBI_API_KEY")
    if not api_key:
        raise ConfigurationError("no Ombi API key found; set OMBI_API_KEY")
    return CatalogConfig(
        api_url=api_url,
        api_key=api_key,
        usernames=parse_usernames(env),
        debug_search=bool(env.get("DEBUG_OMBI_SEARCH")),
    )


def parse_xmtp_config(environ: Mapping[str, str] | None = None) -> XmtpConfig:
    """Read the messaging identity settings. Validation happens in the factory."""
    env = _env(environ)
    return XmtpConfig(
        signer_key=env.get("XOMBI_SIGNER_KEY", ""),
        encryption_key=env.get("XMTP_ENCRYPTION_KEY", ""),
        environment=env.get("XMTP_ENV") or "production",
        auto_revoke_installations=_flag(env.get("XMTP_REVOKE_ALL_OTHER_INSTALLATIONS")),
        gateway_url=env.get("XMTP_GATEWAY_URL") or DEFAULT_GATEWAY_URL,
        gateway_api_key=env.get("XMTP_GATEWAY_API_KEY") or None,
    )


def parse_webhook_config(environ: Mapping[str, str] | None = None) -> WebhookConfig:
    env = _env(environ)
    if not _flag(env.get("OMBI_XOMBI_WEBHOOK_ENABLED")):
        return WebhookConfig(enabled=False)

    port = DEFAULT_WEBHOOK_PORT
    raw_port = env.get("OMBI_XOMBI_WEBHOOK_PORT")
    if raw_port:
        try:
            port = int(raw_port) or DEFAULT_WEBHOOK_PORT
        except ValueError:
            port = DEFAULT_WEBHOOK_PORT

    allowlisted_ips = list(DEFAULT_ALLOWLISTED_IPS)
    raw_ips = env.get("OMBI_XOMBI_WEBHOOK_ALLOWLISTED_IPS")
    if raw_ips:
        allowlisted_ips = [ip.strip() for ip in raw_ips.split(",") if ip.strip()]

    return WebhookConfig(
        enabled=True,
        application_key=env.get("OMBI_XOMBI_APPLICATION_KEY") or None,
        base_url=(env.get("OMBI_XOMBI_WEBHOOK_BASE_URL") or "").rstrip("/") or None,
        allowlisted_ips=allowlisted_ips,
        ombi_api_url=env.get("OMBI_API_URL") or DEFAULT_OMBI_API_URL,
        ombi_api_key=env.get("OMBI_API_KEY") or None,
        port=port,
        debug_enabled=_flag(env.get("DEBUG_OMBI_WEBHOOK")),
        trust_proxy=_flag(env.get("OMBI_XOMBI_WEBHOOK_TRUST_PROXY")),
    )


def validate_webhook_config(config: WebhookConfig) -> None:
    if not config.enabled:
        return
    if not config.application_key:
        raise ConfigurationError(
            "OMBI_XOMBI_APPLICATION_KEY environment variable is required when webhooks are enabled"
        )
    if not config.ombi_api_key:
        raise ConfigurationError("OMBI_API_KEY environment variable is required")
