from __future__ import annotations

from datetime import date
from pathlib import Path

from patent_retriever.config import OutputSettings
from patent_retriever.errors import ConfigError
from patent_retriever.models import DownloadMode, Identifier

TITLE_PLACEHOLDER = "Patent_Document"


def publication_filename(
    identifier: Identifier,
    fmt: str = "publication-number",
    today: date | None = None,
) -> str:
    if fmt == "publication-number":
        return f"{identifier}.pdf"
    if fmt == "publication-number-date":
        stamp = (today or date.today()).isoformat()
        return f"{identifier}_{stamp}.pdf"
    if fmt == "publication-number-title":
        return f"{identifier}_{TITLE_PLACEHOLDER}.pdf"
    raise ConfigError(f"Unknown filename_format: {fmt}")


def publication_path(
    identifier: Identifier,
    output: OutputSettings,
    *,
    out_dir: Path | None = None,
    today: date | None = None,
) -> Path:
    base = out_dir or output.require_directory()
    if output.create_subfolders:
        base = base / identifier.jurisdiction
    return base / publication_filename(identifier, output.filename_format, today)


def file_wrapper_filename(application_number: str, mode: DownloadMode) -> str:
    suffix = "zip" if mode is DownloadMode.ARCHIVE else "pdf"
    return f"{application_number}_file_wrapper.{suffix}"


__all__ = [
    "file_wrapper_filename",
    "publication_filename",
    "publication_path",
]
