"""Bearer-token resolution for provider requests."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = 3600.0
TOKEN_SAFETY_MARGIN = 300.0


def parse_token_response(data: Any) -> tuple[str, float | None]:
    """Extract ``(token, expires_in)`` from a token endpoint response.

    Accepts a bare JSON string, an OAuth-style ``{"access_token": ...}``
    object, or a ``{"token": ...}`` object.
    """
    if isinstance(data, str):
        return data, None
    if isinstance(data, dict):
        for key in ("access_token", "token"):
            if data.get(key):
                expires_in = data.get("expires_in")
                if expires_in is not None:
                    expires_in = float(expires_in)
                return data[key], expires_in
    raise ValueError("Invalid token response format")


class BearerTokenCache:
    """Resolves the bearer credential for a provider session.

    Without a token URL the static API key is used as-is.  With one, a
    token is fetched and reused until ``TOKEN_SAFETY_MARGIN`` seconds
    before it expires.  A failed fetch falls back to the static key.

    Args:
        token_url: Endpoint returning a bearer token, or ``None``.
        api_key: Static key used directly or as the fallback.
        clock: Wall-clock source in seconds; injectable for tests.
    """

    def __init__(
        self,
        token_url: str | None = None,
        api_key: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.token_url = token_url
        self.api_key = api_key
        self._clock = clock
        self._token: str | None = None
        self._expiry: float | None = None
        self._lock = asyncio.Lock()

    def set_token_url(self, token_url: str | None) -> None:
        self.token_url = token_url
        self.clear()

    def clear(self) -> None:
        self._token = None
        self._expiry = None

    def _is_fresh(self, now: float) -> bool:
        return (
            self._token is not None
            and self._expiry is not None
            and now < self._expiry - TOKEN_SAFETY_MARGIN
        )

    async def get_token(self, client: httpx.AsyncClient) -> str | None:
        if not self.token_url:
            return self.api_key

        async with self._lock:
            now = self._clock()
            if self._is_fresh(now):
                return self._token

            try:
                response = await client.get(
                    self.token_url,
                    headers={"Content-Type": "application/json"},
                )
                response.raise_for_status()
                token, expires_in = parse_token_response(response.json())
            except (httpx.HTTPError, ValueError, TypeError) as e:
                logger.error(f"Failed to fetch bearer token: {e}")
                return self.api_key

            self._token = token
            self._expiry = now + (expires_in or DEFAULT_TOKEN_TTL)
            return token
