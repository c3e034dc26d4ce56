"""Turn ordered fetch results into one merged PDF or one ZIP archive."""

from __future__ import annotations

import contextlib
import io
import logging
import os
import re
import secrets
import shutil
import tempfile
import zipfile
from pathlib import Path
from typing import Callable, Iterator

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PyPdfError

from patent_retriever.errors import AssemblyError, SetupError
from patent_retriever.models import AssemblyJob, AssemblyMode, FetchResult

logger = logging.getLogger(__name__)

NO_CONTENT = "no content to assemble"
ItemCallback = Callable[[FetchResult], None]
_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9.\-]")


def sanitize_name(value: str) -> str:
    return _UNSAFE_NAME_CHARS.sub("_", value)


def archive_entry_name(document_code: str, document_identifier: str) -> str:
    return sanitize_name(f"{document_code}-{document_identifier}") + ".pdf"


def dedupe_name(name: str, taken: set[str]) -> str:
    if name not in taken:
        return name
    stem, dot, ext = name.rpartition(".")
    if not dot:
        stem, ext = name, ""
    counter = 2
    while True:
        candidate = f"{stem}-{counter}.{ext}" if ext else f"{stem}-{counter}"
        if candidate not in taken:
            return candidate
        counter += 1


def write_atomic(destination: Path, data: bytes) -> None:
    """Write via a sibling temp file so readers never see a partial output."""

    try:
        destination.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{destination.name}.", dir=destination.parent
        )
    except OSError as exc:
        raise AssemblyError(f"Cannot write {destination}: {exc}") from exc
    tmp_path = Path(tmp_name)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_path, destination)
    except OSError as exc:
        with contextlib.suppress(OSError):
            tmp_path.unlink()
        raise AssemblyError(f"Cannot write {destination}: {exc}") from exc


def merge_documents(job: AssemblyJob, on_item: ItemCallback | None = None) -> int:
    successes = job.successes()
    if not successes:
        raise AssemblyError(NO_CONTENT)

    writer = PdfWriter()
    for result in successes:
        try:
            reader = PdfReader(io.BytesIO(result.read()))
            pages = list(reader.pages)
        except (PyPdfError, ValueError, OSError) as exc:
            logger.warning(
                "Skipping unreadable payload %s (%s): %s",
                result.index,
                result.label,
                exc,
            )
        else:
            for page in pages:
                writer.add_page(page)
        if on_item is not None:
            on_item(result)

    page_count = len(writer.pages)
    if page_count == 0:
        raise AssemblyError(NO_CONTENT)

    buffer = io.BytesIO()
    writer.write(buffer)
    write_atomic(job.destination, buffer.getvalue())
    logger.info("Merged %d page(s) into %s", page_count, job.destination)
    return page_count


def build_archive(job: AssemblyJob, on_item: ItemCallback | None = None) -> int:
    successes = job.successes()
    if not successes:
        raise AssemblyError(NO_CONTENT)

    buffer = io.BytesIO()
    taken: set[str] = set()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for result in successes:
            base = job.entry_names.get(result.index) or sanitize_name(
                f"document-{result.index}"
            ) + ".pdf"
            name = dedupe_name(base, taken)
            taken.add(name)
            archive.writestr(name, result.read())
            if on_item is not None:
                on_item(result)

    write_atomic(job.destination, buffer.getvalue())
    logger.info("Archived %d document(s) into %s", len(taken), job.destination)
    return len(taken)


def assemble(job: AssemblyJob, on_item: ItemCallback | None = None) -> int:
    """Run the job once; returns pages merged or entries archived.

    ``on_item`` is called once per successful result, in index order.
    """

    if job.mode is AssemblyMode.ARCHIVE:
        return build_archive(job, on_item)
    return merge_documents(job, on_item)


@contextlib.contextmanager
def scratch_directory(parent: Path) -> Iterator[Path]:
    path = parent / f".scratch-{secrets.token_hex(6)}"
    try:
        path.mkdir(parents=True)
    except OSError as exc:
        raise SetupError(f"Cannot create scratch directory in {parent}: {exc}") from exc
    try:
        yield path
    finally:
        try:
            shutil.rmtree(path)
        except OSError as exc:
            logger.warning("Failed to clean scratch directory %s: %s", path, exc)


__all__ = [
    "NO_CONTENT",
    "archive_entry_name",
    "assemble",
    "build_archive",
    "dedupe_name",
    "merge_documents",
    "sanitize_name",
    "scratch_directory",
    "write_atomic",
]
