from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class Phase(str, Enum):
    PREPARING = "preparing"
    FETCHING = "fetching"
    MERGING = "merging"
    ARCHIVING = "archiving"
    COMPLETED = "completed"
    FAILED = "failed"


class AssemblyMode(str, Enum):
    MERGE = "merge"
    ARCHIVE = "archive"


class DownloadMode(str, Enum):
    FRONTPAGE = "frontpage"
    FULLAPP = "fullapp"
    MERGE = "merge"
    ARCHIVE = "archive"

    @property
    def assembly(self) -> AssemblyMode:
        if self is DownloadMode.ARCHIVE:
            return AssemblyMode.ARCHIVE
        return AssemblyMode.MERGE


@dataclass(frozen=True)
class Identifier:
    jurisdiction: str
    number: str
    kind: str

    def __str__(self) -> str:
        return f"{self.jurisdiction}{self.number}{self.kind}"

    @property
    def docdb(self) -> str:
        return f"{self.jurisdiction}.{self.number}.{self.kind}"


@dataclass(frozen=True)
class OpsCredentials:
    consumer_key: str
    consumer_secret: str


@dataclass(frozen=True)
class UsptoCredentials:
    api_key: str


@dataclass(frozen=True)
class SessionToken:
    value: str
    expires_at: float

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


@dataclass(frozen=True)
class DocumentInstance:
    description: str
    page_count: int
    resource_link: str


@dataclass(frozen=True)
class FileWrapperDocument:
    document_code: str
    document_identifier: str
    official_date: str
    direction: str
    description: str
    page_count: int | None
    download_url: str
    mime_type: str = "PDF"


@dataclass(frozen=True)
class FetchTask:
    index: int
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    label: str = ""


@dataclass
class FetchResult:
    index: int
    success: bool
    payload: bytes | None = None
    error: str | None = None
    path: Path | None = None
    label: str = ""

    def read(self) -> bytes:
        if self.payload is not None:
            return self.payload
        if self.path is not None:
            return self.path.read_bytes()
        raise ValueError(f"result {self.index} carries no payload")


@dataclass
class AssemblyJob:
    results: list[FetchResult]
    mode: AssemblyMode
    destination: Path
    entry_names: dict[int, str] = field(default_factory=dict)

    def successes(self) -> list[FetchResult]:
        return [r for r in sorted(self.results, key=lambda r: r.index) if r.success]


@dataclass(frozen=True)
class ProgressEvent:
    phase: Phase
    completed: int
    total: int
    detail: str | None = None

    def as_dict(self) -> dict[str, object]:
        return {
            "phase": self.phase.value,
            "completed": self.completed,
            "total": self.total,
            "detail": self.detail,
        }


@dataclass
class DownloadResult:
    success: bool
    message: str
    file_path: Path | None = None
    failed_indices: list[int] = field(default_factory=list)
    total: int = 0
    succeeded: int = 0
    error_code: str | None = None

    @property
    def partial(self) -> bool:
        return self.success and bool(self.failed_indices)


def ensure_parent(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


__all__ = [
    "AssemblyJob",
    "AssemblyMode",
    "DocumentInstance",
    "DownloadMode",
    "DownloadResult",
    "FetchResult",
    "FetchTask",
    "FileWrapperDocument",
    "Identifier",
    "OpsCredentials",
    "Phase",
    "ProgressEvent",
    "SessionToken",
    "UsptoCredentials",
    "ensure_parent",
]
