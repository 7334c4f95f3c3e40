from __future__ import annotations

import concurrent.futures
import json
import logging
from pathlib import Path
from typing import Callable, Sequence

from .constants import BATCH_SUMMARY_NAME, FileKind
from .models import BatchItemResult, BatchSummary
from .utils import atomic_write


log = logging.getLogger(__name__)

ITEM_PROCESSING = "processing"
ITEM_SUCCESS = "success"
ITEM_FAILED = "failed"

ItemProgress = Callable[[int, Path, str], None]


def _chunks(files: Sequence[Path], size: int) -> list[list[tuple[int, Path]]]:
    indexed = list(enumerate(files))
    return [indexed[start : start + size] for start in range(0, len(indexed), size)]


def run_batch(
    files: Sequence[Path],
    kind_of: Callable[[Path], FileKind],
    process_one: Callable[[Path, FileKind], Path],
    workers: int,
    output_dir: Path,
    on_progress: ItemProgress | None = None,
    *,
    on_chunk: Callable[[list[BatchItemResult]], None] | None = None,
) -> list[BatchItemResult]:
    """Process ``files`` in consecutive waves of at most ``workers`` items.

    Members of a wave run concurrently; the next wave starts only when the
    whole current wave has settled. A failing item becomes a failure result
    and never stops the batch. Results come back in input order.
    """
    if workers < 1:
        raise ValueError("workers must be at least 1")
    output_dir.mkdir(parents=True, exist_ok=True)
    results: list[BatchItemResult | None] = [None] * len(files)

    def _notify(index: int, path: Path, state: str) -> None:
        if on_progress is None:
            return
        try:
            on_progress(index, path, state)
        except Exception:
            log.warning("Progress callback failed for %s (%s)", path, state, exc_info=True)

    def _run_one(index: int, path: Path) -> None:
        _notify(index, path, ITEM_PROCESSING)
        try:
            kind = kind_of(path)
            output = process_one(path, kind)
        except Exception as exc:
            log.warning("Batch item %s failed: %s", path, exc)
            results[index] = BatchItemResult.failure(path, str(exc) or type(exc).__name__)
            _notify(index, path, ITEM_FAILED)
            return
        results[index] = BatchItemResult.success(path, output)
        _notify(index, path, ITEM_SUCCESS)

    executor = concurrent.futures.ThreadPoolExecutor(max_workers=workers)
    interrupted = False
    try:
        for number, chunk in enumerate(_chunks(files, workers), start=1):
            log.debug("Starting batch chunk %d with %d file(s)", number, len(chunk))
            futures = [executor.submit(_run_one, index, path) for index, path in chunk]
            concurrent.futures.wait(futures)
            for future in futures:
                future.result()
            if on_chunk is not None:
                on_chunk([item for item in results if item is not None])
    except KeyboardInterrupt:
        interrupted = True
        log.warning("Batch interrupted; abandoning in-flight items")
        raise
    finally:
        # In-flight requests are abandoned, not awaited, after Ctrl+C.
        executor.shutdown(wait=not interrupted, cancel_futures=interrupted)

    return [item for item in results if item is not None]


def write_batch_summary(
    output_dir: Path,
    results: Sequence[BatchItemResult],
    *,
    elapsed_s: float = 0.0,
    extra: dict[str, object] | None = None,
) -> Path:
    summary = BatchSummary.from_results(list(results), elapsed_s)
    payload: dict[str, object] = {
        "summary": summary.to_dict(),
        "results": [item.to_dict() for item in results],
    }
    if extra:
        payload.update(extra)
    path = output_dir / BATCH_SUMMARY_NAME
    atomic_write(path, json.dumps(payload, indent=2))
    return path


__all__ = [
    "ITEM_FAILED",
    "ITEM_PROCESSING",
    "ITEM_SUCCESS",
    "run_batch",
    "write_batch_summary",
]
