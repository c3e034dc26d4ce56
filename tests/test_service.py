from __future__ import annotations

import asyncio
import json
import zipfile
from pathlib import Path
from typing import Any

import pytest

from patent_retriever.errors import SetupError
from patent_retriever.models import DownloadMode, Phase
from patent_retriever.progress import ProgressRecorder
from patent_retriever.service import RetrievalService

from conftest import FakeRepositories, page_widths, uspto_document


def _run(options: dict[str, Any], repos: FakeRepositories, body):
    async def runner():
        async with RetrievalService(options, client=repos.client(), environ={}) as service:
            return await body(service)

    return asyncio.run(runner())


def _out(options: dict[str, Any]) -> Path:
    return Path(options["downloadDirectory"])


def test_frontpage_download(options, repos) -> None:
    recorder = ProgressRecorder()
    result = _run(
        options,
        repos,
        lambda s: s.download_publication("us10721857b2", reporter=recorder),
    )
    assert result.success, result.message
    assert result.file_path == _out(options) / "US10721857B2.pdf"
    assert page_widths(result.file_path) == [101]
    assert repos.inquiry_bodies == ["US.10721857.B2"]
    assert recorder.phases() == [
        Phase.PREPARING,
        Phase.FETCHING,
        Phase.MERGING,
        Phase.COMPLETED,
    ]


def test_fullapp_single_batch_keeps_page_order(options, repos) -> None:
    # Page 1 is slowest, so it completes last.
    repos.page_delay = lambda page: 0.06 - page * 0.01
    result = _run(
        options,
        repos,
        lambda s: s.download_publication("US10721857B2", DownloadMode.FULLAPP),
    )
    assert result.success
    assert (result.total, result.succeeded, result.failed_indices) == (5, 5, [])
    assert page_widths(result.file_path) == [101, 102, 103, 104, 105]
    assert repos.peak_in_flight == 5
    assert repos.token_calls == 1


def test_fullapp_respects_page_ceiling(options, repos) -> None:
    repos.page_count = 20
    options["pageConcurrency"] = 8
    result = _run(options, repos, lambda s: s.download_publication("US10721857B2", "fullapp"))
    assert result.success
    assert repos.peak_in_flight <= 8
    assert page_widths(result.file_path) == [100 + p for p in range(1, 21)]


def test_partial_failure_reports_failed_pages(options, repos) -> None:
    repos.failing_pages = {2, 4}
    result = _run(options, repos, lambda s: s.download_publication("US10721857B2", "fullapp"))
    assert result.success and result.partial
    assert result.failed_indices == [2, 4]
    assert "2, 4" in result.message
    assert page_widths(result.file_path) == [101, 103, 105]


def test_all_pages_failing_produces_no_file(options, repos) -> None:
    repos.failing_pages = {1, 2, 3, 4, 5}
    recorder = ProgressRecorder()
    result = _run(
        options,
        repos,
        lambda s: s.download_publication("US10721857B2", "fullapp", reporter=recorder),
    )
    assert not result.success
    assert result.error_code == "assembly"
    assert result.failed_indices == [1, 2, 3, 4, 5]
    out = _out(options)
    assert not (out / "US10721857B2.pdf").exists()
    assert [p for p in out.iterdir()] == []
    assert recorder.events[-1].phase is Phase.FAILED


def test_invalid_identifier_makes_no_request(options, repos) -> None:
    result = _run(options, repos, lambda s: s.download_publication("DE10721857B2"))
    assert not result.success
    assert result.error_code == "validation"
    assert repos.requests == []


def test_unsupported_mode_is_rejected(options, repos) -> None:
    result = _run(
        options, repos, lambda s: s.download_publication("US10721857B2", DownloadMode.ARCHIVE)
    )
    assert result.error_code == "validation"
    assert repos.requests == []


def test_missing_credentials_fail_without_request(options, repos) -> None:
    del options["opsConsumerSecret"]
    result = _run(options, repos, lambda s: s.download_publication("US10721857B2"))
    assert result.error_code == "auth"
    assert repos.requests == []


def test_batch_of_publications_continues_after_failure(options, repos) -> None:
    results = _run(
        options,
        repos,
        lambda s: s.download_publications(["XX1", "US10721857B2"], DownloadMode.FRONTPAGE),
    )
    assert [r.success for r in results] == [False, True]
    assert repos.token_calls == 1


def test_manifest_written_next_to_output(options, repos) -> None:
    result = _run(options, repos, lambda s: s.download_publication("US10721857B2"))
    manifest = result.file_path.with_name("US10721857B2.pdf.manifest.json")
    data = json.loads(manifest.read_text(encoding="utf-8"))
    assert data["provider"] == "ops"
    assert data["target"] == "US10721857B2"
    assert data["mode"] == "frontpage"
    assert data["failed_indices"] == []
    assert [item["label"] for item in data["items"]] == ["page 1"]
    assert len(data["output_sha256"]) == 64


@pytest.mark.parametrize("flag", [False, "false", "no"])
def test_manifest_can_be_disabled(options, repos, flag) -> None:
    options["writeManifest"] = flag
    result = _run(options, repos, lambda s: s.download_publication("US10721857B2"))
    assert result.success
    assert sorted(p.name for p in result.file_path.parent.iterdir()) == ["US10721857B2.pdf"]


def test_subfolders_and_filename_format(options, repos) -> None:
    options["createSubfolders"] = True
    options["filenameFormat"] = "publication-number-title"
    result = _run(options, repos, lambda s: s.download_publication("US10721857B2"))
    assert result.file_path == _out(options) / "US" / "US10721857B2_Patent_Document.pdf"


def test_file_wrapper_archive(options, repos) -> None:
    repos.documents = [uspto_document("CTNF", f"DOC{i:02d}") for i in range(1, 13)]
    recorder = ProgressRecorder()
    result = _run(
        options,
        repos,
        lambda s: s.download_file_wrapper("16/123,456", reporter=recorder),
    )
    assert result.success, result.message
    assert result.file_path == _out(options) / "16123456_file_wrapper.zip"
    assert repos.peak_in_flight <= 5
    with zipfile.ZipFile(result.file_path) as archive:
        assert archive.namelist() == [f"CTNF-DOC{i:02d}.pdf" for i in range(1, 13)]
    settled = [
        e.completed
        for e in recorder.for_phase(Phase.FETCHING)
        if not (e.detail or "").startswith("batch ")
    ]
    assert settled == list(range(13))
    archiving = recorder.for_phase(Phase.ARCHIVING)
    assert [e.completed for e in archiving] == list(range(13))
    assert all(e.total == 12 for e in archiving)


def test_file_wrapper_partial_archive(options, repos) -> None:
    repos.documents = [uspto_document("CTNF", "K1"), uspto_document("NOA", "K2")]
    repos.failing_documents = {"K1"}
    result = _run(options, repos, lambda s: s.download_file_wrapper("16123456"))
    assert result.success and result.failed_indices == [1]
    with zipfile.ZipFile(result.file_path) as archive:
        assert archive.namelist() == ["NOA-K2.pdf"]


def test_file_wrapper_merge(options, repos, tmp_path: Path) -> None:
    repos.documents = [uspto_document("CTNF", "K1"), uspto_document("NOA", "K2")]
    target = tmp_path / "merged" / "wrapper.pdf"
    result = _run(
        options,
        repos,
        lambda s: s.download_file_wrapper("16123456", "merge", destination=target),
    )
    assert result.success
    assert page_widths(target) == [300, 300]
    assert sorted(p.name for p in target.parent.iterdir()) == [
        "wrapper.pdf",
        "wrapper.pdf.manifest.json",
    ]


def test_file_wrapper_listing(options, repos) -> None:
    repos.documents = [uspto_document("CTNF", "K1"), uspto_document("XML", "K2", pdf=False)]
    documents = _run(options, repos, lambda s: s.list_file_wrapper("16123456"))
    assert [d.document_identifier for d in documents] == ["K1"]


def test_scratch_setup_failure_is_raised(options, repos, tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory")
    with pytest.raises(SetupError):
        _run(
            options,
            repos,
            lambda s: s.download_publication("US10721857B2", destination=blocker / "out.pdf"),
        )


def test_merge_phase_advances_per_page(options, repos) -> None:
    repos.failing_pages = {3}
    recorder = ProgressRecorder()
    _run(
        options,
        repos,
        lambda s: s.download_publication("US10721857B2", "fullapp", reporter=recorder),
    )
    merging = recorder.for_phase(Phase.MERGING)
    assert [e.completed for e in merging] == [0, 1, 2, 3, 4]
    assert merging[-1].detail == "page 5"
    assert all(e.total == 4 for e in merging)


def test_broken_redirect_fails_only_its_document(options, repos) -> None:
    repos.documents = [uspto_document("CTNF", "K1"), uspto_document("NOA", "DOCBAD")]
    repos.broken_redirects = {"DOCBAD"}
    result = _run(options, repos, lambda s: s.download_file_wrapper("16123456"))
    assert result.success, result.message
    assert result.failed_indices == [2]
    with zipfile.ZipFile(result.file_path) as archive:
        assert archive.namelist() == ["CTNF-K1.pdf"]
