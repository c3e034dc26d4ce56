from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest
from pypdf import PdfReader, PdfWriter

OPS_AUTH = "https://ops.example/3.2/auth/accesstoken"
OPS_BASE = "https://ops.example/3.2/rest-services"
USPTO_BASE = "https://uspto.example/api/v1/patent"


def make_pdf(widths: list[float]) -> bytes:
    writer = PdfWriter()
    for width in widths:
        writer.add_blank_page(width=width, height=200)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def page_widths(path: Path) -> list[int]:
    return [int(float(page.mediabox.width)) for page in PdfReader(str(path)).pages]


def images_xml(instances: list[dict[str, str]]) -> str:
    tags = "".join(
        "<ops:document-instance "
        + " ".join(f'{key}="{value}"' for key, value in attrs.items())
        + "/>"
        for attrs in instances
    )
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<ops:world-patent-data xmlns:ops="http://ops.epo.org">'
        "<ops:document-inquiry><ops:inquiry-result>"
        f"{tags}"
        "</ops:inquiry-result></ops:document-inquiry>"
        "</ops:world-patent-data>"
    )


@dataclass
class FakeRepositories:
    """In-memory OPS + USPTO endpoints behind an ``httpx.MockTransport``."""

    page_count: int = 5
    failing_pages: set[int] = field(default_factory=set)
    page_delay: Callable[[int], float] = lambda page: 0.0
    documents: list[dict[str, Any]] = field(default_factory=list)
    failing_documents: set[str] = field(default_factory=set)
    broken_redirects: set[str] = field(default_factory=set)
    token_calls: int = 0
    inquiry_bodies: list[str] = field(default_factory=list)
    requests: list[httpx.Request] = field(default_factory=list)
    in_flight: int = 0
    peak_in_flight: int = 0

    async def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url == OPS_AUTH:
            self.token_calls += 1
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": "1199"})
        if url.endswith("/published-data/publication/docdb/images"):
            self.inquiry_bodies.append(request.content.decode())
            return httpx.Response(
                200,
                text=images_xml(
                    [
                        {
                            "desc": "Drawing",
                            "number-of-pages": "2",
                            "link": "published-data/images/US/10721857/B2/drawing",
                        },
                        {
                            "desc": "FullDocument",
                            "number-of-pages": str(self.page_count),
                            "link": "published-data/images/US/10721857/B2/fullimage",
                        },
                    ]
                ),
            )
        if "/published-data/images/" in url:
            page = int(request.headers["X-OPS-Range"])
            return await self._slow(page, self._page(page))
        if url.startswith(USPTO_BASE) and url.endswith("/documents"):
            return httpx.Response(200, json={"count": len(self.documents), "documentBag": self.documents})
        if url.startswith("https://uspto.example/download/"):
            doc_id = url.rsplit("/", 1)[-1].removesuffix(".pdf")
            if doc_id in self.broken_redirects:
                return httpx.Response(302, headers={"Location": "https://[bad-host/x.pdf"})
            return httpx.Response(
                302,
                headers={"Location": url.replace("uspto.example/download", "files.example")},
            )
        if url.startswith("https://files.example/"):
            doc_id = url.rsplit("/", 1)[-1].removesuffix(".pdf")
            if "x-api-key" in request.headers:
                return httpx.Response(400, text="signed URL must not carry the key")
            if doc_id in self.failing_documents:
                return httpx.Response(500)
            return await self._slow(0, httpx.Response(200, content=make_pdf([300])))
        return httpx.Response(404)

    def _page(self, page: int) -> httpx.Response:
        if page in self.failing_pages:
            return httpx.Response(503)
        return httpx.Response(200, content=make_pdf([100 + page]))

    async def _slow(self, page: int, response: httpx.Response) -> httpx.Response:
        self.in_flight += 1
        self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.page_delay(page) or 0.001)
        finally:
            self.in_flight -= 1
        return response

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))


def uspto_document(code: str, identifier: str, *, pdf: bool = True) -> dict[str, Any]:
    options = [
        {
            "mimeTypeIdentifier": "XML",
            "downloadUrl": f"https://uspto.example/download/{identifier}.xml",
        }
    ]
    if pdf:
        options.append(
            {
                "mimeTypeIdentifier": "PDF",
                "downloadUrl": f"https://uspto.example/download/{identifier}.pdf",
                "pageTotalQuantity": 3,
            }
        )
    return {
        "documentCode": code,
        "documentIdentifier": identifier,
        "officialDate": "2021-03-04T00:00:00.000-0500",
        "directionCategory": "OUTGOING",
        "documentCodeDescriptionText": f"{code} description",
        "downloadOptionBag": options,
    }


@pytest.fixture
def repos() -> FakeRepositories:
    return FakeRepositories()


@pytest.fixture
def options(tmp_path: Path) -> dict[str, Any]:
    return {
        "opsConsumerKey": "key",
        "opsConsumerSecret": "secret",
        "usptoApiKey": "api-key",
        "downloadDirectory": str(tmp_path / "out"),
        "ops_auth_url": OPS_AUTH,
        "ops_base_url": OPS_BASE,
        "uspto_base_url": USPTO_BASE,
        "rate_limit_delay": 0,
    }
