"""Batched fan-out of fetch tasks with a concurrency ceiling.

Tasks run in sequential batches of at most ``concurrency``; a batch settles
completely before the next one starts. Every task owns the result slot at
its index, so the returned list is always in submission order no matter
which request finishes first.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, Sequence

from patent_retriever.errors import RetrieverError
from patent_retriever.models import FetchResult, FetchTask, Phase
from patent_retriever.progress import ProgressChannel

logger = logging.getLogger(__name__)

FetchFn = Callable[[FetchTask], Awaitable[bytes]]


@dataclass(frozen=True)
class BatchSummary:
    total: int
    succeeded: int
    failed_indices: list[int]

    @classmethod
    def of(cls, results: Sequence[FetchResult]) -> BatchSummary:
        failed = [r.index for r in results if not r.success]
        return cls(
            total=len(results),
            succeeded=len(results) - len(failed),
            failed_indices=failed,
        )


def batches(tasks: Sequence[FetchTask], size: int) -> list[list[FetchTask]]:
    if size < 1:
        raise ValueError("batch size must be at least 1")
    return [list(tasks[i : i + size]) for i in range(0, len(tasks), size)]


def _spool(spool_dir: Path, task: FetchTask, payload: bytes) -> Path:
    path = spool_dir / f"part_{task.index:05d}.pdf"
    path.write_bytes(payload)
    return path


async def _settle(
    task: FetchTask,
    fetch: FetchFn,
    spool_dir: Path | None,
) -> FetchResult:
    started = time.monotonic()
    try:
        payload = await fetch(task)
        if spool_dir is not None:
            path = _spool(spool_dir, task, payload)
            result = FetchResult(task.index, True, path=path, label=task.label)
        else:
            result = FetchResult(task.index, True, payload=payload, label=task.label)
    except RetrieverError as exc:
        logger.warning("Task %s (%s) failed: %s", task.index, task.label, exc)
        return FetchResult(task.index, False, error=str(exc), label=task.label)
    except Exception as exc:  # noqa: BLE001 - task failures are data
        logger.warning(
            "Task %s (%s) failed unexpectedly: %r", task.index, task.label, exc
        )
        return FetchResult(
            task.index, False, error=f"{type(exc).__name__}: {exc}", label=task.label
        )
    logger.debug(
        "Task %s (%s) done in %.0fms",
        task.index,
        task.label,
        (time.monotonic() - started) * 1000,
    )
    return result


async def run_batches(
    tasks: Sequence[FetchTask],
    fetch: FetchFn,
    *,
    concurrency: int,
    progress: ProgressChannel | None = None,
    spool_dir: Path | None = None,
) -> list[FetchResult]:
    channel = progress or ProgressChannel()
    ordered = sorted(tasks, key=lambda t: t.index)
    total = len(ordered)
    channel.enter(Phase.FETCHING, total)
    if not ordered:
        return []

    ceiling = max(1, min(total, concurrency))
    slots: dict[int, FetchResult] = {}

    async def run_one(task: FetchTask) -> None:
        result = await _settle(task, fetch, spool_dir)
        slots[task.index] = result
        outcome = "ok" if result.success else f"failed: {result.error}"
        channel.advance(f"{task.label or task.index} {outcome}")

    for number, batch in enumerate(batches(ordered, ceiling), start=1):
        span = f"{batch[0].label or batch[0].index}..{batch[-1].label or batch[-1].index}"
        logger.info("Batch %d: %d task(s) %s", number, len(batch), span)
        channel.note(f"batch {number}: {span}")
        await asyncio.gather(*(run_one(task) for task in batch))

    summary = BatchSummary.of([slots[t.index] for t in ordered])
    logger.info(
        "Fetched %d/%d (failed: %s)",
        summary.succeeded,
        summary.total,
        summary.failed_indices or "none",
    )
    return [slots[t.index] for t in ordered]


__all__ = ["BatchSummary", "FetchFn", "batches", "run_batches"]
