from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx

from ..config import PROVIDER_KEY, ImageryConfig
from .http import response_detail
from .usage import record_api_usage

logger = logging.getLogger(__name__)

# Tokens are refreshed this many seconds before the provider-reported expiry.
TOKEN_EXPIRY_MARGIN = 300.0
TOKEN_USAGE_KEY = f"{PROVIDER_KEY}:token"

_token_manager: TokenManager | None = None


class AuthenticationError(Exception):
    """Raised when the provider rejects the client-credentials exchange."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(frozen=True)
class AccessToken:
    """Bearer credential together with its absolute expiry (epoch seconds)."""

    value: str
    expires_at: float

    def is_fresh(self, now: float) -> bool:
        return now < self.expires_at - TOKEN_EXPIRY_MARGIN


class TokenManager:
    """Caches the provider bearer token and refreshes it at most once at a time.

    Concurrent callers that find no usable token queue on a single lock; the
    first one performs the exchange and the rest pick up its result. The lock
    belongs to the running event loop, so one manager can serve successive
    loops (for example repeated ``asyncio.run`` calls); the cached token is
    shared between them.
    """

    def __init__(self, config: ImageryConfig, *, clock: Callable[[], float] = time.time) -> None:
        self.config = config
        self._clock = clock
        self._token: AccessToken | None = None
        self._lock: asyncio.Lock | None = None
        self._lock_loop: asyncio.AbstractEventLoop | None = None

    @property
    def cached_token(self) -> AccessToken | None:
        return self._token

    def invalidate(self) -> None:
        self._token = None

    async def get_token(self, client: httpx.AsyncClient) -> str:
        token = self._usable_token()
        if token is not None:
            return token.value

        async with self._refresh_lock():
            token = self._usable_token()
            if token is not None:
                return token.value
            token = await self._exchange(client)
            self._token = token
            return token.value

    def _refresh_lock(self) -> asyncio.Lock:
        loop = asyncio.get_running_loop()
        if self._lock is None or self._lock_loop is not loop:
            self._lock = asyncio.Lock()
            self._lock_loop = loop
        return self._lock

    def _usable_token(self) -> AccessToken | None:
        token = self._token
        if token is not None and token.is_fresh(self._clock()):
            logger.debug("Reusing cached provider token")
            return token
        return None

    async def _exchange(self, client: httpx.AsyncClient) -> AccessToken:
        credentials = base64.b64encode(
            f"{self.config.client_id}:{self.config.client_secret}".encode("utf-8")
        ).decode("ascii")
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": f"Basic {credentials}",
        }

        try:
            response = await client.post(
                self.config.token_url,
                data={"grant_type": "client_credentials"},
                headers=headers,
            )
        except httpx.RequestError as exc:
            raise AuthenticationError(f"Provider token exchange failed: {exc}") from exc

        if not response.is_success:
            raise AuthenticationError(
                f"Provider auth failed: {response.status_code} {response_detail(response)}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
            value = str(payload["access_token"])
            expires_in = float(payload.get("expires_in") or 0)
        except (ValueError, KeyError, TypeError) as exc:
            raise AuthenticationError(
                "Provider token response is missing access_token",
                status_code=response.status_code,
            ) from exc

        record_api_usage(TOKEN_USAGE_KEY)
        logger.info("Obtained provider access token valid for %.0f seconds", expires_in)
        return AccessToken(value=value, expires_at=self._clock() + expires_in)


def get_token_manager(config: ImageryConfig) -> TokenManager:
    """Return the process-wide token manager for ``config``."""

    global _token_manager
    if _token_manager is None or _token_manager.config != config:
        _token_manager = TokenManager(config)
    return _token_manager
