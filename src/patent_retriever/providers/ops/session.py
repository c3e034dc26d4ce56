"""Bearer token cache for EPO Open Patent Services.

One ``OpsSession`` belongs to one caller context. A refresh in flight is a
single future; callers arriving meanwhile await it instead of starting a
second token exchange.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Callable

from patent_retriever.config import RetrieverSettings, mask_secret
from patent_retriever.errors import AuthError, NetworkError
from patent_retriever.fetcher import BoundedFetcher
from patent_retriever.models import OpsCredentials, SessionToken

logger = logging.getLogger(__name__)


def basic_authorization(credentials: OpsCredentials) -> str:
    raw = f"{credentials.consumer_key}:{credentials.consumer_secret}"
    return "Basic " + base64.b64encode(raw.encode("utf-8")).decode("ascii")


class OpsSession:
    def __init__(
        self,
        credentials: OpsCredentials,
        fetcher: BoundedFetcher,
        settings: RetrieverSettings | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.credentials = credentials
        self.fetcher = fetcher
        self.settings = settings or fetcher.settings
        self._clock = clock
        self._token: SessionToken | None = None
        self._pending: asyncio.Future[SessionToken] | None = None
        self.refresh_count = 0

    @property
    def cached(self) -> SessionToken | None:
        if self._token is not None and self._token.is_valid(self._clock()):
            return self._token
        return None

    def invalidate(self) -> None:
        self._token = None

    async def token(self) -> str:
        cached = self.cached
        if cached is not None:
            return cached.value
        if self._pending is None:
            loop = asyncio.get_running_loop()
            self._pending = loop.create_future()
            pending = self._pending
            try:
                fresh = await self._exchange()
            except asyncio.CancelledError:
                # Waiters must not hang on an exchange nobody will finish.
                pending.set_exception(AuthError("Token refresh was cancelled"))
                pending.exception()
                raise
            except Exception as exc:
                pending.set_exception(exc)
                # Waiters already hold the exception; mark it retrieved.
                pending.exception()
                raise
            else:
                self._token = fresh
                pending.set_result(fresh)
                return fresh.value
            finally:
                self._pending = None
        return (await asyncio.shield(self._pending)).value

    async def auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {await self.token()}"}

    async def _exchange(self) -> SessionToken:
        creds = self.credentials
        if not creds.consumer_key or not creds.consumer_secret:
            raise AuthError(
                "EPO OPS credentials are missing; configure the consumer key and secret"
            )
        logger.info(
            "Requesting OPS access token (key %s)", mask_secret(creds.consumer_key)
        )
        self.refresh_count += 1
        issued_at = self._clock()
        try:
            resp = await self.fetcher.request(
                "POST",
                self.settings.ops_auth_url,
                headers={
                    "Authorization": basic_authorization(creds),
                    "Content-Type": "application/x-www-form-urlencoded",
                },
                content="grant_type=client_credentials",
            )
        except NetworkError as exc:
            raise AuthError(f"Network error while requesting access token: {exc}") from exc

        if resp.status_code != 200:
            raise AuthError(
                f"Failed to get access token: HTTP {resp.status_code}",
                detail=resp.text[:500],
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise AuthError("Access token response is not JSON") from exc
        value = payload.get("access_token") if isinstance(payload, dict) else None
        if not value:
            raise AuthError("No access_token in token response")

        lifetime = _declared_lifetime(payload, self.settings.token_lifetime_seconds)
        cache_for = max(0.0, lifetime - self.settings.token_safety_margin_seconds)
        logger.info("OPS token cached for %.0fs", cache_for)
        return SessionToken(value=str(value), expires_at=issued_at + cache_for)


def _declared_lifetime(payload: dict[str, Any], default: float) -> float:
    raw = payload.get("expires_in")
    if isinstance(raw, (int, float)) or (isinstance(raw, str) and raw.isdigit()):
        return float(raw)
    return default


__all__ = ["OpsSession", "basic_authorization"]
