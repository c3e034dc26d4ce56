from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol

from patent_retriever.models import AssemblyMode, FetchTask


@dataclass
class RetrievalPlan:
    """What one request will fetch and how the results are assembled."""

    target: str
    tasks: list[FetchTask]
    mode: AssemblyMode
    concurrency: int
    entry_names: dict[int, str] = field(default_factory=dict)
    description: str = ""


class DocumentRepository(Protocol):
    name: str

    async def fetch(self, task: FetchTask) -> bytes: ...


__all__ = ["DocumentRepository", "RetrievalPlan"]
