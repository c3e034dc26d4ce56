from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Mapping

from patent_retriever.models import ensure_parent

LOG_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )
    # httpx logs every request at INFO; keep it for -v only.
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)


def append_jsonl(path: Path, record: Mapping[str, object]) -> None:
    ensure_parent(path)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(json.dumps(record, ensure_ascii=False))
        handle.write("\n")


__all__ = ["append_jsonl", "configure_logging"]
