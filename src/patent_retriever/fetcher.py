"""Single-request HTTP fetcher shared by both repositories.

One request at a time per call: 429 is retried after a fixed delay, at most
one redirect hop is followed, and every other non-2xx status is terminal.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping
from urllib.parse import urljoin, urlparse

import httpx

from patent_retriever.config import RetrieverSettings
from patent_retriever.errors import (
    AuthError,
    FetchTimeoutError,
    HttpStatusError,
    NetworkError,
    NotFoundError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

REDIRECT_STATUSES = frozenset({301, 302, 303, 307, 308})
CREDENTIAL_HEADERS = ("authorization", "x-api-key")


def build_client(settings: RetrieverSettings) -> httpx.AsyncClient:
    return httpx.AsyncClient(
        timeout=httpx.Timeout(settings.http_timeout),
        headers={"User-Agent": settings.user_agent},
        follow_redirects=False,
    )


def _host(url: str) -> str:
    return (urlparse(url).hostname or "").lower()


def strip_credentials(headers: Mapping[str, str]) -> dict[str, str]:
    return {
        key: value
        for key, value in headers.items()
        if key.lower() not in CREDENTIAL_HEADERS
    }


def forward_credentials(origin: str, target: str, trusted: tuple[str, ...]) -> bool:
    target_host = _host(target)
    return target_host == _host(origin) or target_host in trusted


def raise_for_status(response: httpx.Response, what: str) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    message = f"{what}: HTTP {status}"
    if status in {401, 403}:
        raise AuthError(message, detail=response.text[:500])
    if status == 404:
        raise NotFoundError(message, detail=response.text[:500])
    raise HttpStatusError(message, status_code=status)


class BoundedFetcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: RetrieverSettings | None = None,
    ) -> None:
        self.client = client
        self.settings = settings or RetrieverSettings()

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        content: bytes | str | None = None,
    ) -> httpx.Response:
        attempt = 0
        while True:
            try:
                # httpx timeouts apply per phase; this bounds the whole exchange.
                resp = await asyncio.wait_for(
                    self.client.request(
                        method,
                        url,
                        headers=dict(headers or {}),
                        content=content,
                        timeout=self.settings.http_timeout,
                    ),
                    self.settings.http_timeout,
                )
            except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
                raise FetchTimeoutError(
                    f"Timed out after {self.settings.http_timeout:g}s: {url}"
                ) from exc
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise NetworkError(f"Network error for {url}: {exc}") from exc

            if resp.status_code != 429:
                return resp

            attempt += 1
            if attempt > self.settings.max_rate_limit_retries:
                raise RateLimitedError(
                    f"Still rate limited after {attempt - 1} retries: {url}"
                )
            logger.debug(
                "429 from %s, retry %d in %.1fs",
                _host(url),
                attempt,
                self.settings.rate_limit_delay,
            )
            await asyncio.sleep(self.settings.rate_limit_delay)

    async def fetch_bytes(
        self,
        url: str,
        headers: Mapping[str, str] | None = None,
    ) -> bytes:
        headers = dict(headers or {})
        resp = await self.request("GET", url, headers=headers)

        if resp.status_code in REDIRECT_STATUSES:
            location = resp.headers.get("location")
            if not location:
                raise HttpStatusError(
                    f"Redirect without Location from {url}",
                    status_code=resp.status_code,
                )
            try:
                target = urljoin(url, location)
                trusted = forward_credentials(
                    url, target, self.settings.trusted_redirect_hosts
                )
            except ValueError as exc:
                raise HttpStatusError(
                    f"Invalid redirect Location from {url}: {location!r}",
                    status_code=resp.status_code,
                ) from exc
            hop_headers = headers if trusted else strip_credentials(headers)
            logger.debug("Following redirect %s -> %s", _host(url), _host(target))
            resp = await self.request("GET", target, headers=hop_headers)
            if resp.status_code in REDIRECT_STATUSES:
                raise HttpStatusError(
                    f"Too many redirects for {url}",
                    status_code=resp.status_code,
                )

        raise_for_status(resp, f"Download failed for {url}")
        return resp.content


__all__ = [
    "BoundedFetcher",
    "build_client",
    "forward_credentials",
    "raise_for_status",
    "strip_credentials",
]
