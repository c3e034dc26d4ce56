from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Sequence

from patent_retriever.models import FetchResult

MANIFEST_SCHEMA = "patent-retriever.manifest.v1"


def build_manifest_envelope(
    *,
    provider: str,
    target: str,
    mode: str,
    created_at: str,
    output: Path | None,
    results: Sequence[FetchResult],
    schema: str = MANIFEST_SCHEMA,
    schema_version: int = 1,
) -> dict[str, Any]:
    """Provider-neutral record of one request.

    Contract:
    - Top-level keys are stable across repositories.
    - Per-task outcomes live under ``items`` in index order.
    """

    items = [
        {
            "index": r.index,
            "label": r.label,
            "success": r.success,
            "error": r.error,
        }
        for r in sorted(results, key=lambda r: r.index)
    ]
    return {
        "schema": schema,
        "schema_version": schema_version,
        "provider": provider,
        "target": target,
        "mode": mode,
        "created_at": created_at,
        "output": str(output) if output else None,
        "output_sha256": sha256_file(output) if output and output.exists() else None,
        "failed_indices": [i["index"] for i in items if not i["success"]],
        "items": items,
    }


def dump_manifest_text(envelope: Mapping[str, Any]) -> str:
    return json.dumps(envelope, indent=2, ensure_ascii=False, sort_keys=True)


def sha256_file(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1 << 16), b""):
            digest.update(chunk)
    return digest.hexdigest()


def manifest_path_for(output: Path) -> Path:
    return output.with_name(output.name + ".manifest.json")


def write_manifest_json(path: Path, envelope: Mapping[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_manifest_text(envelope) + "\n", encoding="utf-8")
    return path


__all__ = [
    "MANIFEST_SCHEMA",
    "build_manifest_envelope",
    "dump_manifest_text",
    "manifest_path_for",
    "sha256_file",
    "write_manifest_json",
]
