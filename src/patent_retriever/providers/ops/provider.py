from __future__ import annotations

import logging
from typing import Iterable
from xml.etree import ElementTree as ET

from patent_retriever.config import RetrieverSettings
from patent_retriever.errors import AuthError, NotFoundError, ResponseFormatError
from patent_retriever.fetcher import BoundedFetcher, raise_for_status
from patent_retriever.identifiers import parse_identifier
from patent_retriever.models import (
    AssemblyMode,
    DocumentInstance,
    DownloadMode,
    FetchTask,
    Identifier,
)
from patent_retriever.providers.base import RetrievalPlan
from patent_retriever.providers.ops.local_constants import (
    FULL_DOCUMENT_DESC,
    INSTANCE_TAG,
    OPS_IMAGES_PATH,
    OPS_PROVIDER_ID,
    OPS_RANGE_HEADER,
)
from patent_retriever.providers.ops.session import OpsSession
from patent_retriever.providers.registry import ProviderCapabilities, ProviderInfo

logger = logging.getLogger(__name__)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _instance_from_attrs(attrs: dict[str, str]) -> DocumentInstance | None:
    desc = attrs.get("desc")
    pages = attrs.get("number-of-pages")
    link = attrs.get("link")
    if not desc or not pages or not link:
        return None
    try:
        page_count = int(pages)
    except ValueError:
        return None
    if page_count < 1:
        return None
    return DocumentInstance(description=desc, page_count=page_count, resource_link=link)


def parse_document_instances(xml_text: str | bytes) -> list[DocumentInstance]:
    """Every well-formed ``document-instance`` element, in document order.

    Records missing ``desc``, ``number-of-pages`` or ``link`` are skipped.
    """

    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise ResponseFormatError(f"Images inquiry returned invalid XML: {exc}") from exc

    instances: list[DocumentInstance] = []
    for element in root.iter():
        if _local_name(element.tag) != INSTANCE_TAG:
            continue
        instance = _instance_from_attrs(dict(element.attrib))
        if instance is None:
            logger.debug("Skipping incomplete instance record: %s", element.attrib)
            continue
        instances.append(instance)
    return instances


def select_instance(instances: Iterable[DocumentInstance]) -> DocumentInstance:
    candidates = list(instances)
    if not candidates:
        raise NotFoundError("No document instances found")
    for instance in candidates:
        if instance.description == FULL_DOCUMENT_DESC:
            return instance
    logger.info(
        "%s not offered, falling back to %s",
        FULL_DOCUMENT_DESC,
        candidates[0].description,
    )
    return candidates[0]


def page_tasks(
    instance: DocumentInstance,
    base_url: str,
    pages: Iterable[int],
) -> list[FetchTask]:
    url = f"{base_url.rstrip('/')}/{instance.resource_link.lstrip('/')}"
    return [
        FetchTask(
            index=page,
            url=url,
            headers={"Accept": "application/pdf", OPS_RANGE_HEADER: str(page)},
            label=f"page {page}",
        )
        for page in pages
    ]


class OpsProvider:
    name = OPS_PROVIDER_ID
    provider_info = ProviderInfo(
        name=OPS_PROVIDER_ID,
        title="EPO Open Patent Services",
        description="Publication page images merged into one PDF",
        capabilities=ProviderCapabilities(
            supports_merge=True,
            supports_archive=False,
            requires_token=True,
        ),
        credentials=["ops_consumer_key", "ops_consumer_secret"],
        homepage="https://ops.epo.org/",
    )

    def __init__(
        self,
        session: OpsSession,
        fetcher: BoundedFetcher,
        settings: RetrieverSettings | None = None,
    ) -> None:
        self.session = session
        self.fetcher = fetcher
        self.settings = settings or fetcher.settings

    async def locate(self, identifier: str | Identifier) -> DocumentInstance:
        ident = parse_identifier(identifier)
        headers = await self.session.auth_headers()
        headers.update({"Accept": "application/xml", "Content-Type": "text/plain"})
        resp = await self.fetcher.request(
            "POST",
            self.settings.ops_base_url + OPS_IMAGES_PATH,
            headers=headers,
            content=ident.docdb,
        )
        if resp.status_code == 401:
            self.session.invalidate()
        if resp.status_code == 404:
            raise NotFoundError(f"No document instances found for {ident}")
        raise_for_status(resp, f"Images inquiry failed for {ident}")

        instances = parse_document_instances(resp.content)
        if not instances:
            raise NotFoundError(f"No document instances found for {ident}")
        selected = select_instance(instances)
        logger.info(
            "%s: selected %s with %d page(s)",
            ident,
            selected.description,
            selected.page_count,
        )
        return selected

    async def plan(
        self,
        identifier: str | Identifier,
        mode: DownloadMode,
    ) -> RetrievalPlan:
        ident = parse_identifier(identifier)
        instance = await self.locate(ident)
        if mode is DownloadMode.FRONTPAGE:
            pages: Iterable[int] = [1]
        else:
            pages = range(1, instance.page_count + 1)
        tasks = page_tasks(instance, self.settings.ops_base_url, pages)
        return RetrievalPlan(
            target=str(ident),
            tasks=tasks,
            mode=AssemblyMode.MERGE,
            concurrency=self.settings.page_concurrency,
            description=f"{instance.description}, {len(tasks)} page(s)",
        )

    async def fetch(self, task: FetchTask) -> bytes:
        headers = dict(task.headers)
        headers.update(await self.session.auth_headers())
        try:
            return await self.fetcher.fetch_bytes(task.url, headers)
        except AuthError:
            self.session.invalidate()
            raise


__all__ = [
    "OpsProvider",
    "page_tasks",
    "parse_document_instances",
    "select_instance",
]
