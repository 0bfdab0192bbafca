"""
Ombi catalog client.

Searches and requests are made on behalf of a chat user: every call
carries the Ombi username mapped from the user's wallet address, so
Ombi applies that user's permissions and quotas.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Mapping
from urllib.parse import quote as url_quote

from xombi.errors import (
    CatalogError,
    NoCatalogResponseError,
    RequestFailedError,
    UnresolvableAddressError,
)
from xombi.http import HttpClient
from xombi.types import (
    MovieSearchResult,
    RequestOutcome,
    TvSearchResult,
    WebhookSettings,
)

logger = logging.getLogger(__name__)

WEBHOOK_SETTINGS_PATH = "/api/v1/Settings/notifications/webhook"


def classify_catalog_error(body: Any) -> RequestOutcome:
    """Translate an Ombi response body into a request outcome.

    Ombi reports domain errors in the body (``isError``, ``errorCode``,
    ``errorMessage``). TV errors often have no code, so the message text
    is matched as well. This is the only place that knows those strings.

    Raises:
        NoCatalogResponseError: If there is no body at all.
        CatalogError: For any other error Ombi reports.
    """
    if body is None or body == "":
        raise NoCatalogResponseError("No response body from Ombi")
    if not isinstance(body, dict) or not body.get("isError"):
        return RequestOutcome.SUBMITTED

    error_code = body.get("errorCode") or ""
    error_message = body.get("errorMessage") or ""

    if error_code == "AlreadyRequested" or "already have episodes" in error_message:
        return RequestOutcome.ALREADY_REQUESTED
    if error_code.startswith("NoPermissions") or "do not have permissions to" in error_message:
        return RequestOutcome.NO_PERMISSION

    raise CatalogError(
        f"Ombi returned an unexpected error code ({error_code or None}) "
        f"with a message: {error_message}"
    )


def _parse_date(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _catalog_id(item_id: str) -> int | str:
    return int(item_id) if item_id.isdigit() else item_id


class CatalogClient:
    """Search and request media in Ombi on behalf of wallet addresses."""

    def __init__(
        self,
        api_url: str,
        api_key: str,
        usernames: Mapping[str, str],
        debug: bool = False,
    ) -> None:
        self._http = HttpClient(api_url, headers={"ApiKey": api_key})
        self._usernames = {addr.lower(): name for addr, name in usernames.items()}
        self._debug = debug

    def resolve_username(self, address: str) -> str:
        """Map a wallet address to its Ombi username.

        Raises:
            UnresolvableAddressError: If no username is configured.
        """
        username = self._usernames.get(address.lower())
        if not username:
            raise UnresolvableAddressError(address)
        return username

    async def _execute(self, address: str, method: str, path: str, body: Any = None) -> Any:
        headers = {"UserName": self.resolve_username(address)}
        data = await self._http.request(method, path, body, headers=headers)
        if self._debug:
            logger.debug("Response to %s %s: %s", method, path, data)
        return data

    async def _search(self, address: str, search_term: str, body: dict[str, Any]) -> list[dict[str, Any]]:
        path = f"/api/v2/search/multi/{url_quote(search_term, safe='')}"
        data = await self._execute(address, "POST", path, body)
        if data is None:
            raise NoCatalogResponseError(f"No Ombi response for {path}")
        if isinstance(data, dict):
            classify_catalog_error(data)
            data = data.get("results", [])
        return list(data)

    # -- Search -------------------------------------------------------------

    async def search_movies(self, address: str, search_term: str) -> list[MovieSearchResult]:
        results = await self._search(address, search_term, {"movies": True})
        return [MovieSearchResult(id=str(r["id"]), title=r.get("title") or "") for r in results]

    async def search_tv(self, address: str, search_term: str) -> list[TvSearchResult]:
        """Search shows, then fetch each show's details concurrently."""
        results = await self._search(address, search_term, {"tvShows": True})
        return list(
            await asyncio.gather(*(self._show_details(address, r) for r in results))
        )

    async def _show_details(self, address: str, result: dict[str, Any]) -> TvSearchResult:
        show_id = str(result["id"])
        details = await self._execute(
            address, "GET", f"/api/v2/search/tv/moviedb/{url_quote(show_id, safe='')}"
        ) or {}
        return TvSearchResult(
            id=show_id,
            title=result.get("title") or details.get("title") or "",
            first_aired=_parse_date(details.get("firstAired")),
            season_count=len(details.get("seasonRequests") or []),
            status=(details.get("status") or "").lower(),
        )

    # -- Requests -----------------------------------------------------------

    async def request_movie(self, address: str, movie: MovieSearchResult) -> RequestOutcome:
        data = await self._submit(
            address,
            "/api/v1/request/movie",
            {"theMovieDbId": _catalog_id(movie.id), "is4kRequest": False},
        )
        return classify_catalog_error(data)

    async def request_tv(self, address: str, show: TvSearchResult) -> RequestOutcome:
        data = await self._submit(
            address,
            "/api/v2/requests/tv",
            {"theMovieDbId": _catalog_id(show.id), "requestAll": True},
        )
        return classify_catalog_error(data)

    async def _submit(self, address: str, path: str, body: dict[str, Any]) -> Any:
        try:
            return await self._execute(address, "POST", path, body)
        except RequestFailedError as e:
            # Ombi answers some request errors with a 4xx and the usual
            # isError body; let the classifier decide.
            if isinstance(e.body, dict) and e.body.get("isError"):
                return e.body
            raise

    async def close(self) -> None:
        await self._http.close()


class WebhookManager:
    """Manages this bot's webhook registration inside Ombi."""

    def __init__(self, api_url: str, api_key: str) -> None:
        self._http = HttpClient(api_url, headers={"ApiKey": api_key})

    async def get_current_webhook_settings(self) -> WebhookSettings:
        data = await self._http.request("GET", WEBHOOK_SETTINGS_PATH)
        return WebhookSettings(**(data or {}))

    async def register_webhook(self, webhook_url: str, application_token: str | None = None) -> bool:
        """Point Ombi's webhook agent at ``webhook_url``.

        Skips the update when Ombi already has the same URL enabled.

        Returns:
            ``True`` if the webhook is registered, ``False`` otherwise.
        """
        try:
            current = await self.get_current_webhook_settings()
            if current.enabled and current.webhook_url == webhook_url:
                logger.info("Webhook already configured with the same URL, skipping registration")
                return True

            logger.info("Registering webhook with Ombi: %s", webhook_url)
            return await self._save_settings(
                WebhookSettings(
                    enabled=True,
                    webhook_url=webhook_url,
                    application_token=application_token or None,
                )
            )
        except Exception:
            logger.exception("Error registering webhook with Ombi")
            return False

    async def unregister_webhook(self) -> bool:
        try:
            ok = await self._save_settings(WebhookSettings(enabled=False))
        except Exception:
            logger.exception("Error unregistering webhook from Ombi")
            return False
        if ok:
            logger.info("Webhook successfully unregistered from Ombi")
        return ok

    async def _save_settings(self, settings: WebhookSettings) -> bool:
        data = await self._http.request(
            "POST", WEBHOOK_SETTINGS_PATH, settings.model_dump(by_alias=True)
        )
        if data is True:
            return True
        logger.error("Unexpected response while saving webhook settings: %r", data)
        return False

    async def close(self) -> None:
        await self._http.close()
