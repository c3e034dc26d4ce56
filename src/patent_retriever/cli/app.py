from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import typer

from patent_retriever.config import load_options
from patent_retriever.errors import RetrieverError
from patent_retriever.log_utils import configure_logging
from patent_retriever.models import DownloadMode, DownloadResult, ProgressEvent
from patent_retriever.progress import JsonlProgressLog, ProgressReporter
from patent_retriever.providers.registry import (
    register_default_providers,
    registry,
)
from patent_retriever.service import RetrievalService

app = typer.Typer(
    help="Download patent publications and file wrapper documents",
)
file_wrapper_app = typer.Typer(help="USPTO file wrapper documents")
app.add_typer(file_wrapper_app, name="file-wrapper")

DEFAULT_CONFIG = Path("patent-retriever.yaml")


def build_options(
    config: Path | None,
    *,
    out_dir: Path | None = None,
    **overrides: Any,
) -> dict[str, Any]:
    """Config file values, overridden by any non-None command line option."""

    options = load_options(config if config is not None else DEFAULT_CONFIG)
    if out_dir is not None:
        options["download_directory"] = str(out_dir)
    for key, value in overrides.items():
        if value is not None:
            options[key] = value
    return options


def _echo_event(label: str) -> ProgressReporter:
    def report(event: ProgressEvent) -> None:
        detail = f" {event.detail}" if event.detail else ""
        typer.echo(
            f"[{label}] {event.phase.value} {event.completed}/{event.total}{detail}"
        )

    return report


def _reporter(label: str, progress_log: Path | None, quiet: bool) -> ProgressReporter | None:
    sinks: list[ProgressReporter] = []
    if not quiet:
        sinks.append(_echo_event(label))
    if progress_log is not None:
        sinks.append(JsonlProgressLog(progress_log, request_id=label))
    if not sinks:
        return None

    def fan_out(event: ProgressEvent) -> None:
        for sink in sinks:
            sink(event)

    return fan_out


def _report_results(results: list[DownloadResult]) -> None:
    failures = 0
    for result in results:
        status = "OK" if result.success else "FAILED"
        typer.echo(f"{status}: {result.message}")
        if not result.success:
            failures += 1
    if failures:
        raise typer.Exit(code=1)


def _run(coro: Any) -> Any:
    try:
        return asyncio.run(coro)
    except RetrieverError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from exc


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    configure_logging(verbose)


@app.command()
def download(
    publication: list[str] = typer.Argument(
        ..., help="Publication numbers (e.g., US10721857B2)"
    ),
    mode: DownloadMode = typer.Option(
        DownloadMode.FRONTPAGE, help="frontpage | fullapp"
    ),
    config: Path | None = typer.Option(None, help="YAML configuration file"),
    out_dir: Path | None = typer.Option(None, help="Download directory override"),
    concurrency: int | None = typer.Option(
        None, help="Parallel page downloads (default 8)"
    ),
    progress_log: Path | None = typer.Option(
        None, help="Append progress events to this JSONL file"
    ),
    quiet: bool = typer.Option(False, help="Do not echo progress events"),
) -> None:
    """Download publications from EPO OPS and merge their pages into PDFs."""

    options = build_options(config, out_dir=out_dir, page_concurrency=concurrency)

    async def runner() -> list[DownloadResult]:
        async with RetrievalService(options) as service:
            return await service.download_publications(
                publication,
                mode,
                reporter_for=lambda ident: _reporter(ident, progress_log, quiet),
            )

    _report_results(_run(runner()))


@file_wrapper_app.command("list")
def file_wrapper_list(
    application: str = typer.Argument(..., help="Application number"),
    config: Path | None = typer.Option(None, help="YAML configuration file"),
) -> None:
    """List the downloadable documents of an application."""

    options = build_options(config)

    async def runner() -> list[Any]:
        async with RetrievalService(options) as service:
            return await service.list_file_wrapper(application)

    for doc in _run(runner()):
        pages = doc.page_count if doc.page_count is not None else "?"
        typer.echo(
            f"{doc.official_date[:10]:<10}  {doc.document_code:<8} "
            f"{doc.document_identifier:<20} {doc.direction:<9} {pages:>4}p  "
            f"{doc.description}"
        )


@file_wrapper_app.command("download")
def file_wrapper_download(
    application: str = typer.Argument(..., help="Application number"),
    mode: DownloadMode = typer.Option(DownloadMode.ARCHIVE, help="archive | merge"),
    document_id: list[str] = typer.Option(
        None, help="Only these document identifiers (multi)"
    ),
    code: list[str] = typer.Option(None, help="Only these document codes (multi)"),
    output: Path | None = typer.Option(None, help="Output file path"),
    config: Path | None = typer.Option(None, help="YAML configuration file"),
    out_dir: Path | None = typer.Option(None, help="Download directory override"),
    concurrency: int | None = typer.Option(
        None, help="Parallel document downloads (default 5)"
    ),
    progress_log: Path | None = typer.Option(
        None, help="Append progress events to this JSONL file"
    ),
    quiet: bool = typer.Option(False, help="Do not echo progress events"),
) -> None:
    """Download file wrapper documents into one archive or one merged PDF."""

    options = build_options(config, out_dir=out_dir, archive_concurrency=concurrency)

    async def runner() -> DownloadResult:
        async with RetrievalService(options) as service:
            return await service.download_file_wrapper(
                application,
                mode,
                destination=output,
                document_ids=document_id or None,
                codes=code or None,
                reporter=_reporter(application, progress_log, quiet),
            )

    _report_results([_run(runner())])


@app.command("providers")
def providers() -> None:
    """List supported repositories and capabilities."""

    register_default_providers()
    for info in registry.entries():
        caps = info.capabilities
        typer.echo(
            " - {name}: {title} | merge={merge} archive={archive} "
            "token={token} credentials={creds}".format(
                name=info.name,
                title=info.title,
                merge=caps.supports_merge,
                archive=caps.supports_archive,
                token=caps.requires_token,
                creds=",".join(info.credentials) or "-",
            )
        )


def run() -> None:
    app()


__all__ = [
    "app",
    "build_options",
    "download",
    "file_wrapper_download",
    "file_wrapper_list",
    "providers",
    "run",
]


if __name__ == "__main__":
    run()
