"""
Thin httpx wrapper shared by the catalog client and the messaging gateway
adapter.
"""

from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx

from xombi.errors import RequestFailedError

logger = logging.getLogger(__name__)


class HttpClient:
    """Async JSON-over-HTTP client with 429 backoff and safe errors."""

    def __init__(
        self,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers or {},
            timeout=timeout,
        )

    async def request(
        self,
        method: str,
        path: str,
        body: Any = None,
        headers: dict[str, str] | None = None,
        _retries: int = 3,
        _attempt: int = 0,
    ) -> Any:
        """Make a request and return the decoded JSON body.

        Retries on 429 with exponential backoff (2s, 4s, 8s, jittered).
        Returns ``None`` for empty bodies.

        Raises:
            RequestFailedError: On any status >= 400. The message only
                carries the server's ``error``/``message`` field.
        """
        response = await self._client.request(
            method=method,
            url=path,
            json=body,
            headers=headers,
        )

        if response.status_code == 429 and _retries > 0:
            retry_after = float(response.headers.get("retry-after", "0"))
            delay = max(retry_after, min(2 * (2 ** _attempt), 30))
            delay *= 0.8 + random.random() * 0.4
            logger.info(
                "Rate limited (429) on %s %s; retrying in %.1fs (attempt %d/%d)",
                method, path, delay, _attempt + 1, _attempt + _retries,
            )
            await asyncio.sleep(delay)
            return await self.request(method, path, body, headers, _retries - 1, _attempt + 1)

        data = _decode(response)

        # raise_for_status() would put the whole body (and maybe secrets)
        # into the exception message, so build a safe one instead.
        if response.status_code >= 400:
            err_msg = "Request failed"
            if isinstance(data, dict):
                err_msg = (
                    data.get("error")
                    or data.get("message")
                    or data.get("errorMessage")
                    or err_msg
                )
            raise RequestFailedError(
                f"{method} {path} failed ({response.status_code}): {err_msg}",
                status_code=response.status_code,
                body=data,
            )

        return data

    async def close(self) -> None:
        await self._client.aclose()


def _decode(response: httpx.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
