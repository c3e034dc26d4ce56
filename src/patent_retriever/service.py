"""Request orchestration: normalize, locate, fetch, assemble, report.

Every public coroutine returns a ``DownloadResult``. Only request setup
failures (``SetupError``) are raised to the caller.
"""

from __future__ import annotations

import contextlib
import logging
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping

import httpx

from patent_retriever.assembler import assemble, scratch_directory
from patent_retriever.config import (
    OutputSettings,
    RetrieverSettings,
    as_bool,
    normalize_options,
    ops_credentials,
    uspto_credentials,
)
from patent_retriever.errors import RetrieverError, SetupError, ValidationError
from patent_retriever.fetcher import BoundedFetcher, build_client
from patent_retriever.identifiers import normalize_application_number, parse_identifier
from patent_retriever.manifests import (
    build_manifest_envelope,
    manifest_path_for,
    write_manifest_json,
)
from patent_retriever.models import (
    AssemblyJob,
    AssemblyMode,
    DownloadMode,
    DownloadResult,
    FetchResult,
    FileWrapperDocument,
    Phase,
)
from patent_retriever.naming import file_wrapper_filename, publication_path
from patent_retriever.progress import ProgressChannel, ProgressReporter
from patent_retriever.providers.base import DocumentRepository, RetrievalPlan
from patent_retriever.providers.ops.provider import OpsProvider
from patent_retriever.providers.ops.session import OpsSession
from patent_retriever.providers.uspto.provider import UsptoProvider
from patent_retriever.scheduler import BatchSummary, run_batches

logger = logging.getLogger(__name__)

PUBLICATION_MODES = (DownloadMode.FRONTPAGE, DownloadMode.FULLAPP)
FILE_WRAPPER_MODES = (DownloadMode.ARCHIVE, DownloadMode.MERGE)


def _coerce_mode(
    mode: DownloadMode | str, allowed: tuple[DownloadMode, ...]
) -> DownloadMode:
    resolved: DownloadMode | None
    try:
        resolved = DownloadMode(mode)
    except ValueError:
        resolved = None
    if resolved is None or resolved not in allowed:
        names = ", ".join(m.value for m in allowed)
        raise ValidationError(f"Unsupported mode {mode!r}; expected one of: {names}")
    return resolved


def _result_message(
    target: str,
    mode: DownloadMode,
    path: Path,
    summary: BatchSummary,
) -> str:
    message = f"Downloaded {target} ({mode.value}) to {path}"
    if summary.failed_indices:
        message += (
            f"; {len(summary.failed_indices)} of {summary.total} item(s) failed: "
            + ", ".join(str(i) for i in summary.failed_indices)
        )
    return message


class RetrievalService:
    """One caller context: shared HTTP client, token session and settings."""

    def __init__(
        self,
        options: Mapping[str, Any] | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        environ: Mapping[str, str] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.options = normalize_options(options or {})
        self.settings = RetrieverSettings.from_options(self.options)
        self.output = OutputSettings.from_options(self.options)
        self.write_manifests = as_bool(self.options.get("write_manifest", True))
        self._owns_client = client is None
        self.client = client or build_client(self.settings)
        self.fetcher = BoundedFetcher(self.client, self.settings)
        self.session = OpsSession(
            ops_credentials(self.options, environ),
            self.fetcher,
            self.settings,
            clock=clock,
        )
        self.ops = OpsProvider(self.session, self.fetcher, self.settings)
        self.uspto = UsptoProvider(
            uspto_credentials(self.options, environ),
            self.fetcher,
            self.settings,
        )

    async def __aenter__(self) -> RetrievalService:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def download_publication(
        self,
        identifier: str,
        mode: DownloadMode | str = DownloadMode.FRONTPAGE,
        *,
        destination: Path | None = None,
        out_dir: Path | None = None,
        reporter: ProgressReporter | None = None,
    ) -> DownloadResult:
        channel = ProgressChannel(reporter)
        channel.enter(Phase.PREPARING, 1, str(identifier))
        try:
            resolved = _coerce_mode(mode, PUBLICATION_MODES)
            ident = parse_identifier(identifier)
            target = destination or publication_path(ident, self.output, out_dir=out_dir)
            plan = await self.ops.plan(ident, resolved)
        except RetrieverError as exc:
            return self._failed(channel, str(identifier), exc)
        return await self._execute(plan, self.ops, target, resolved, channel)

    async def download_publications(
        self,
        identifiers: Iterable[str],
        mode: DownloadMode | str = DownloadMode.FRONTPAGE,
        *,
        out_dir: Path | None = None,
        reporter_for: Callable[[str], ProgressReporter | None] | None = None,
    ) -> list[DownloadResult]:
        """Download each publication in turn; one failure never stops the rest."""

        results = []
        for identifier in identifiers:
            reporter = reporter_for(identifier) if reporter_for else None
            results.append(
                await self.download_publication(
                    identifier, mode, out_dir=out_dir, reporter=reporter
                )
            )
        return results

    async def list_file_wrapper(self, application_number: str) -> list[FileWrapperDocument]:
        return await self.uspto.list_documents(application_number)

    async def download_file_wrapper(
        self,
        application_number: str,
        mode: DownloadMode | str = DownloadMode.ARCHIVE,
        *,
        destination: Path | None = None,
        out_dir: Path | None = None,
        document_ids: Iterable[str] | None = None,
        codes: Iterable[str] | None = None,
        reporter: ProgressReporter | None = None,
    ) -> DownloadResult:
        channel = ProgressChannel(reporter)
        channel.enter(Phase.PREPARING, 1, str(application_number))
        try:
            resolved = _coerce_mode(mode, FILE_WRAPPER_MODES)
            app = normalize_application_number(application_number)
            if destination is None:
                base = out_dir or self.output.require_directory()
                destination = base / file_wrapper_filename(app, resolved)
            plan = await self.uspto.plan(
                app, resolved, document_ids=document_ids, codes=codes
            )
        except RetrieverError as exc:
            return self._failed(channel, str(application_number), exc)
        return await self._execute(plan, self.uspto, destination, resolved, channel)

    async def _execute(
        self,
        plan: RetrievalPlan,
        repository: DocumentRepository,
        destination: Path,
        mode: DownloadMode,
        channel: ProgressChannel,
    ) -> DownloadResult:
        logger.info("%s: %s -> %s", plan.target, plan.description, destination)
        results: list[FetchResult] = []
        try:
            with self._scratch_for(plan, destination) as scratch:
                results = await run_batches(
                    plan.tasks,
                    repository.fetch,
                    concurrency=plan.concurrency,
                    progress=channel,
                    spool_dir=scratch,
                )
                summary = BatchSummary.of(results)
                phase = (
                    Phase.ARCHIVING
                    if plan.mode is AssemblyMode.ARCHIVE
                    else Phase.MERGING
                )
                channel.enter(phase, summary.succeeded)
                assemble(
                    AssemblyJob(
                        results=results,
                        mode=plan.mode,
                        destination=destination,
                        entry_names=plan.entry_names,
                    ),
                    on_item=lambda result: channel.advance(result.label or None),
                )
        except SetupError as exc:
            channel.finish(Phase.FAILED, str(exc))
            raise
        except RetrieverError as exc:
            failed = BatchSummary.of(results)
            result = self._failed(channel, plan.target, exc)
            result.failed_indices = failed.failed_indices
            result.total = failed.total
            return result

        if self.write_manifests:
            self._write_manifest(repository.name, plan.target, mode, destination, results)
        message = _result_message(plan.target, mode, destination, summary)
        channel.finish(Phase.COMPLETED, message)
        logger.info(message)
        return DownloadResult(
            success=True,
            message=message,
            file_path=destination,
            failed_indices=summary.failed_indices,
            total=summary.total,
            succeeded=summary.succeeded,
        )

    def _scratch_for(
        self, plan: RetrievalPlan, destination: Path
    ) -> contextlib.AbstractContextManager[Path | None]:
        if plan.mode is AssemblyMode.MERGE:
            return scratch_directory(destination.parent)
        return contextlib.nullcontext(None)

    def _write_manifest(
        self,
        provider: str,
        target: str,
        mode: DownloadMode,
        destination: Path,
        results: list[FetchResult],
    ) -> None:
        envelope = build_manifest_envelope(
            provider=provider,
            target=target,
            mode=mode.value,
            created_at=datetime.now(timezone.utc).isoformat(),
            output=destination,
            results=results,
        )
        try:
            write_manifest_json(manifest_path_for(destination), envelope)
        except OSError as exc:
            logger.warning("Could not write manifest for %s: %s", destination, exc)

    @staticmethod
    def _failed(
        channel: ProgressChannel,
        target: str,
        exc: RetrieverError,
    ) -> DownloadResult:
        logger.error("%s failed: %s", target, exc)
        channel.finish(Phase.FAILED, str(exc))
        return DownloadResult(success=False, message=str(exc), error_code=exc.code)


__all__ = ["RetrievalService"]
