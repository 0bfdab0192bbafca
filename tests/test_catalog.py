"""
Tests for the Ombi catalog client and webhook registration.

Uses respx to mock Ombi; the classifier tests pin the error strings
Ombi is known to return.
"""

from __future__ import annotations

import json

import httpx
import pytest
import respx

from conftest import ALICE, BOB
from xombi.catalog import (
    WEBHOOK_SETTINGS_PATH,
    CatalogClient,
    WebhookManager,
    classify_catalog_error,
)
from xombi.errors import (
    CatalogError,
    NoCatalogResponseError,
    RequestFailedError,
    UnresolvableAddressError,
)
from xombi.types import MovieSearchResult, RequestOutcome, TvSearchResult


OMBI_URL = "http://ombi.test:5000"
API_KEY = "ombi_test_key"


def _client() -> CatalogClient:
    return CatalogClient(OMBI_URL, API_KEY, {ALICE.upper().replace("0X", "0x"): "alice"})


# ============================================================
#  Error classification
# ============================================================


def test_classify_success_bodies() -> None:
    """Bodies without isError are successful submissions."""
    assert classify_catalog_error({"result": True, "requestId": 5}) is RequestOutcome.SUBMITTED
    assert classify_catalog_error({"isError": False}) is RequestOutcome.SUBMITTED
    assert classify_catalog_error([1, 2]) is RequestOutcome.SUBMITTED


def test_classify_already_requested() -> None:
    """The AlreadyRequested code and the TV episodes message both match."""
    assert classify_catalog_error(
        {"isError": True, "errorCode": "AlreadyRequested", "errorMessage": "x"}
    ) is RequestOutcome.ALREADY_REQUESTED
    assert classify_catalog_error(
        {"isError": True, "errorMessage": "We already have episodes requested from series"}
    ) is RequestOutcome.ALREADY_REQUESTED


def test_classify_no_permission() -> None:
    """NoPermissions* codes and the permissions message both match."""
    assert classify_catalog_error(
        {"isError": True, "errorCode": "NoPermissionsRequestMovie"}
    ) is RequestOutcome.NO_PERMISSION
    assert classify_catalog_error(
        {"isError": True, "errorMessage": "You do not have permissions to Request a TV Show"}
    ) is RequestOutcome.NO_PERMISSION


def test_classify_unknown_error_raises() -> None:
    """Unrecognized errors surface as CatalogError."""
    with pytest.raises(CatalogError) as exc:
        classify_catalog_error({"isError": True, "errorCode": "Weird", "errorMessage": "nope"})
    assert "Weird" in str(exc.value)
    assert "nope" in str(exc.value)


def test_classify_missing_body_raises() -> None:
    """An empty response is its own error."""
    with pytest.raises(NoCatalogResponseError):
        classify_catalog_error(None)
    with pytest.raises(NoCatalogResponseError):
        classify_catalog_error("")


# ============================================================
#  Usernames
# ============================================================


def test_resolve_username_is_case_insensitive() -> None:
    """Addresses map to usernames regardless of case."""
    client = _client()
    assert client.resolve_username(ALICE) == "alice"
    assert client.resolve_username(ALICE.upper().replace("0X", "0x")) == "alice"


def test_resolve_unknown_username_raises() -> None:
    """Unmapped addresses are unresolvable."""
    with pytest.raises(UnresolvableAddressError) as exc:
        _client().resolve_username(BOB)
    assert exc.value.address == BOB


# ============================================================
#  Search
# ============================================================


@pytest.mark.asyncio
async def test_search_movies() -> None:
    """Movie search posts to the multi-search endpoint as the user."""
    with respx.mock:
        route = respx.post(f"{OMBI_URL}/api/v2/search/multi/matrix").mock(
            return_value=httpx.Response(
                200,
                json=[
                    {"id": 603, "title": "The Matrix", "mediaType": "movie"},
                    {"id": 604, "title": "The Matrix Reloaded", "mediaType": "movie"},
                ],
            )
        )
        client = _client()
        results = await client.search_movies(ALICE, "matrix")
        await client.close()

        assert route.called
        request = route.calls.last.request
        assert request.headers["ApiKey"] == API_KEY
        assert request.headers["UserName"] == "alice"
        assert json.loads(request.content) == {"movies": True}
        assert [r.id for r in results] == ["603", "604"]
        assert results[0].list_text() == "The Matrix"


@pytest.mark.asyncio
async def test_search_tv_fetches_details() -> None:
    """TV search enriches each show with air date, seasons and status."""
    with respx.mock:
        search = respx.post(f"{OMBI_URL}/api/v2/search/multi/breaking").mock(
            return_value=httpx.Response(200, json=[{"id": 1396, "title": "Breaking Bad"}])
        )
        details = respx.get(f"{OMBI_URL}/api/v2/search/tv/moviedb/1396").mock(
            return_value=httpx.Response(
                200,
                json={
                    "firstAired": "2008-01-20T00:00:00",
                    "seasonRequests": [{}, {}, {}, {}, {}],
                    "status": "Ended",
                },
            )
        )
        client = _client()
        results = await client.search_tv(ALICE, "breaking")
        await client.close()

        assert json.loads(search.calls.last.request.content) == {"tvShows": True}
        assert details.called
        assert len(results) == 1
        assert results[0].list_text() == "Breaking Bad (2008) (5 seasons, ended)"


@pytest.mark.asyncio
async def test_search_for_unmapped_user_makes_no_call() -> None:
    """Username resolution fails before anything is sent."""
    with respx.mock:
        route = respx.post(f"{OMBI_URL}/api/v2/search/multi/matrix").mock(
            return_value=httpx.Response(200, json=[])
        )
        client = _client()
        with pytest.raises(UnresolvableAddressError):
            await client.search_movies(BOB, "matrix")
        await client.close()
        assert not route.called


# ============================================================
#  Requests
# ============================================================


@pytest.mark.asyncio
async def test_request_movie_submitted() -> None:
    """A successful movie request sends the numeric TMDB id."""
    with respx.mock:
        route = respx.post(f"{OMBI_URL}/api/v1/request/movie").mock(
            return_value=httpx.Response(200, json={"result": True, "isError": False, "requestId": 9})
        )
        client = _client()
        outcome = await client.request_movie(ALICE, MovieSearchResult(id="603", title="The Matrix"))
        await client.close()

        assert outcome is RequestOutcome.SUBMITTED
        assert json.loads(route.calls.last.request.content) == {
            "theMovieDbId": 603,
            "is4kRequest": False,
        }


@pytest.mark.asyncio
async def test_request_tv_requests_all_seasons() -> None:
    """TV requests always ask for every season."""
    with respx.mock:
        route = respx.post(f"{OMBI_URL}/api/v2/requests/tv").mock(
            return_value=httpx.Response(200, json={"result": True})
        )
        client = _client()
        outcome = await client.request_tv(ALICE, TvSearchResult(id="1396", title="Breaking Bad"))
        await client.close()

        assert outcome is RequestOutcome.SUBMITTED
        assert json.loads(route.calls.last.request.content) == {
            "theMovieDbId": 1396,
            "requestAll": True,
        }


@pytest.mark.asyncio
async def test_request_error_body_on_4xx_is_classified() -> None:
    """Ombi's isError body is honored even on a 400."""
    with respx.mock:
        respx.post(f"{OMBI_URL}/api/v1/request/movie").mock(
            return_value=httpx.Response(
                400, json={"isError": True, "errorCode": "AlreadyRequested"}
            )
        )
        client = _client()
        outcome = await client.request_movie(ALICE, MovieSearchResult(id="603", title="The Matrix"))
        await client.close()

        assert outcome is RequestOutcome.ALREADY_REQUESTED


@pytest.mark.asyncio
async def test_request_server_error_raises() -> None:
    """Other HTTP failures raise with only the server's error field."""
    with respx.mock:
        respx.post(f"{OMBI_URL}/api/v1/request/movie").mock(
            return_value=httpx.Response(500, json={"error": "boom", "secret": "hunter2"})
        )
        client = _client()
        with pytest.raises(RequestFailedError) as exc:
            await client.request_movie(ALICE, MovieSearchResult(id="603", title="The Matrix"))
        await client.close()

        assert exc.value.status_code == 500
        assert "boom" in str(exc.value)
        assert "hunter2" not in str(exc.value)


# ============================================================
#  Webhook registration
# ============================================================


@pytest.mark.asyncio
async def test_register_webhook_saves_settings() -> None:
    """Registration posts the URL and token in Ombi's format."""
    with respx.mock:
        respx.get(f"{OMBI_URL}{WEBHOOK_SETTINGS_PATH}").mock(
            return_value=httpx.Response(200, json={"enabled": False, "webhookUrl": None})
        )
        save = respx.post(f"{OMBI_URL}{WEBHOOK_SETTINGS_PATH}").mock(
            return_value=httpx.Response(200, json=True)
        )
        manager = WebhookManager(OMBI_URL, API_KEY)
        ok = await manager.register_webhook("http://10.0.0.5:3000/webhook", "app-token")
        await manager.close()

        assert ok is True
        assert json.loads(save.calls.last.request.content) == {
            "enabled": True,
            "webhookUrl": "http://10.0.0.5:3000/webhook",
            "applicationToken": "app-token",
        }


@pytest.mark.asyncio
async def test_register_webhook_skips_when_unchanged() -> None:
    """An already-enabled identical URL is left alone."""
    with respx.mock:
        respx.get(f"{OMBI_URL}{WEBHOOK_SETTINGS_PATH}").mock(
            return_value=httpx.Response(
                200, json={"enabled": True, "webhookUrl": "http://10.0.0.5:3000/webhook"}
            )
        )
        save = respx.post(f"{OMBI_URL}{WEBHOOK_SETTINGS_PATH}").mock(
            return_value=httpx.Response(200, json=True)
        )
        manager = WebhookManager(OMBI_URL, API_KEY)
        ok = await manager.register_webhook("http://10.0.0.5:3000/webhook", "app-token")
        await manager.close()

        assert ok is True
        assert not save.called


@pytest.mark.asyncio
async def test_register_webhook_failure_returns_false() -> None:
    """Errors and unexpected responses are reported as False."""
    with respx.mock:
        respx.get(f"{OMBI_URL}{WEBHOOK_SETTINGS_PATH}").mock(
            return_value=httpx.Response(200, json={"enabled": False})
        )
        respx.post(f"{OMBI_URL}{WEBHOOK_SETTINGS_PATH}").mock(
            return_value=httpx.Response(401, json={"error": "unauthorized"})
        )
        manager = WebhookManager(OMBI_URL, API_KEY)
        ok = await manager.register_webhook("http://10.0.0.5:3000/webhook", "app-token")
        await manager.close()

        assert ok is False


@pytest.mark.asyncio
async def test_unregister_webhook() -> None:
    """Unregistering disables the webhook agent."""
    with respx.mock:
        save = respx.post(f"{OMBI_URL}{WEBHOOK_SETTINGS_PATH}").mock(
            return_value=httpx.Response(200, json=True)
        )
        manager = WebhookManager(OMBI_URL, API_KEY)
        ok = await manager.unregister_webhook()
        await manager.close()

        assert ok is True
        assert json.loads(save.calls.last.request.content)["enabled"] is False
