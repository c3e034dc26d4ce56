from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping

from patent_retriever.assembler import archive_entry_name
from patent_retriever.config import RetrieverSettings
from patent_retriever.errors import AuthError, NotFoundError, ResponseFormatError
from patent_retriever.fetcher import BoundedFetcher, raise_for_status
from patent_retriever.identifiers import normalize_application_number
from patent_retriever.models import (
    DownloadMode,
    FetchTask,
    FileWrapperDocument,
    UsptoCredentials,
)
from patent_retriever.providers.base import RetrievalPlan
from patent_retriever.providers.registry import ProviderCapabilities, ProviderInfo
from patent_retriever.providers.uspto.local_constants import (
    PDF_MIME_TYPE,
    USPTO_API_KEY_HEADER,
    USPTO_PROVIDER_ID,
)

logger = logging.getLogger(__name__)


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def _page_total(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _pdf_option(options: Any) -> Mapping[str, Any] | None:
    if not isinstance(options, list):
        return None
    for option in options:
        if not isinstance(option, Mapping):
            continue
        mime = _text(option.get("mimeTypeIdentifier")).upper()
        if mime in {PDF_MIME_TYPE, "APPLICATION/PDF"} and option.get("downloadUrl"):
            return option
    return None


def parse_document_bag(payload: Any) -> list[FileWrapperDocument]:
    """Documents with a PDF download option, in the order the API lists them."""

    if not isinstance(payload, Mapping):
        raise ResponseFormatError("Document list response is not a JSON object")
    bag = payload.get("documentBag")
    if bag is None:
        return []
    if not isinstance(bag, list):
        raise ResponseFormatError("documentBag is not a list")

    documents: list[FileWrapperDocument] = []
    for entry in bag:
        if not isinstance(entry, Mapping):
            continue
        option = _pdf_option(entry.get("downloadOptionBag"))
        identifier = _text(entry.get("documentIdentifier"))
        if option is None or not identifier:
            logger.debug("Skipping document without PDF option: %s", identifier or entry)
            continue
        documents.append(
            FileWrapperDocument(
                document_code=_text(entry.get("documentCode")) or "DOC",
                document_identifier=identifier,
                official_date=_text(entry.get("officialDate")),
                direction=_text(entry.get("directionCategory")),
                description=_text(entry.get("documentCodeDescriptionText")),
                page_count=_page_total(option.get("pageTotalQuantity")),
                download_url=_text(option.get("downloadUrl")),
                mime_type=PDF_MIME_TYPE,
            )
        )
    return documents


def select_documents(
    documents: Iterable[FileWrapperDocument],
    *,
    document_ids: Iterable[str] | None = None,
    codes: Iterable[str] | None = None,
) -> list[FileWrapperDocument]:
    wanted_ids = {d.strip() for d in document_ids or [] if d.strip()}
    wanted_codes = {c.strip().upper() for c in codes or [] if c.strip()}
    selected = []
    for doc in documents:
        if wanted_ids and doc.document_identifier not in wanted_ids:
            continue
        if wanted_codes and doc.document_code.upper() not in wanted_codes:
            continue
        selected.append(doc)
    return selected


class UsptoProvider:
    name = USPTO_PROVIDER_ID
    provider_info = ProviderInfo(
        name=USPTO_PROVIDER_ID,
        title="USPTO Open Data Portal",
        description="File wrapper documents archived or merged per application",
        capabilities=ProviderCapabilities(
            supports_merge=True,
            supports_archive=True,
            supports_listing=True,
        ),
        credentials=["uspto_api_key"],
        homepage="https://data.uspto.gov/",
    )

    def __init__(
        self,
        credentials: UsptoCredentials,
        fetcher: BoundedFetcher,
        settings: RetrieverSettings | None = None,
    ) -> None:
        self.credentials = credentials
        self.fetcher = fetcher
        self.settings = settings or fetcher.settings

    def _headers(self) -> dict[str, str]:
        if not self.credentials.api_key:
            raise AuthError("USPTO API key is missing; configure uspto_api_key")
        return {USPTO_API_KEY_HEADER: self.credentials.api_key}

    async def list_documents(self, application_number: str) -> list[FileWrapperDocument]:
        app = normalize_application_number(application_number)
        headers = self._headers()
        headers["Accept"] = "application/json"
        url = f"{self.settings.uspto_base_url}/applications/{app}/documents"
        resp = await self.fetcher.request("GET", url, headers=headers)
        if resp.status_code == 404:
            raise NotFoundError(f"No documents found for application {app}")
        raise_for_status(resp, f"Document list failed for {app}")
        try:
            payload = resp.json()
        except json.JSONDecodeError as exc:
            raise ResponseFormatError(f"Document list for {app} is not JSON") from exc

        documents = parse_document_bag(payload)
        logger.info("Application %s: %d downloadable document(s)", app, len(documents))
        return documents

    async def plan(
        self,
        application_number: str,
        mode: DownloadMode,
        *,
        document_ids: Iterable[str] | None = None,
        codes: Iterable[str] | None = None,
    ) -> RetrievalPlan:
        app = normalize_application_number(application_number)
        documents = select_documents(
            await self.list_documents(app),
            document_ids=document_ids,
            codes=codes,
        )
        if not documents:
            raise NotFoundError(f"No matching documents for application {app}")

        tasks: list[FetchTask] = []
        names: dict[int, str] = {}
        for index, doc in enumerate(documents, start=1):
            tasks.append(
                FetchTask(
                    index=index,
                    url=doc.download_url,
                    headers={"Accept": "application/pdf"},
                    label=f"{doc.document_code} {doc.document_identifier}",
                )
            )
            names[index] = archive_entry_name(doc.document_code, doc.document_identifier)
        return RetrievalPlan(
            target=app,
            tasks=tasks,
            mode=mode.assembly,
            concurrency=self.settings.archive_concurrency,
            entry_names=names,
            description=f"{len(tasks)} document(s)",
        )

    async def fetch(self, task: FetchTask) -> bytes:
        headers = dict(task.headers)
        headers.update(self._headers())
        return await self.fetcher.fetch_bytes(task.url, headers)


__all__ = ["UsptoProvider", "parse_document_bag", "select_documents"]
